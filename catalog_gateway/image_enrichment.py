"""
Artist Image Resolution
=======================

Two-hop, licence-constrained artist image lookup for ``get-artist-image``:

1. MusicBrainz artist with URL relations
2. Wikidata relation -> entity P18 (image) claim -> Wikimedia Commons
   Special:FilePath URL at a fixed width            source: "wikidata-derived"
3. Otherwise a direct ``image`` URL relation        source: "catalog-relation"
4. Otherwise no image                               {"imageUrl": None, "source": None}

Only sources with clear redistribution licensing are used; there is no
generic image-search fallback. Image absence is the common case, so every
failing hop is logged and treated as "no data" rather than raised.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import structlog

from .errors import UpstreamUnavailableError
from .upstream_client import ThrottledUpstreamClient

logger = structlog.get_logger(__name__)

WIKIDATA_DERIVED = 'wikidata-derived'
CATALOG_RELATION = 'catalog-relation'

# Wikidata property for "image"
IMAGE_PROPERTY = 'P18'


def no_image() -> Dict[str, Optional[str]]:
    return {'imageUrl': None, 'source': None}


def find_relation(relations: List[Dict[str, Any]], relation_type: str) -> Optional[str]:
    """Return the URL resource of the first relation of the given type."""
    for relation in relations:
        if not isinstance(relation, dict) or relation.get('type') != relation_type:
            continue
        url = relation.get('url')
        resource = url.get('resource') if isinstance(url, dict) else None
        if resource:
            return resource
    return None


def extract_image_claim(entity_data: Any, entity_id: str) -> Optional[str]:
    """Pull the first P18 file name out of a Wikidata EntityData document."""
    try:
        claims = entity_data['entities'][entity_id]['claims'][IMAGE_PROPERTY]
        value = claims[0]['mainsnak']['datavalue']['value']
    except (KeyError, IndexError, TypeError):
        return None
    return value if isinstance(value, str) and value else None


class ArtistImageResolver:
    """
    Resolves an artist image from catalog relations and linked data.

    Usage:
        resolver = ArtistImageResolver(catalog_client, linked_data_client, settings)
        result = await resolver.resolve("a74b1b7f-71a5-4011-9441-d0b5e4122711")
        # {"imageUrl": "https://commons.wikimedia.org/...", "source": "wikidata-derived"}
    """

    def __init__(
        self,
        catalog_client: ThrottledUpstreamClient,
        linked_data_client: ThrottledUpstreamClient,
        musicbrainz_base_url: str,
        wikidata_entity_url: str,
        commons_file_path_url: str,
        image_width: int = 500
    ):
        self.catalog_client = catalog_client
        self.linked_data_client = linked_data_client
        self.musicbrainz_base_url = musicbrainz_base_url.rstrip('/')
        self.wikidata_entity_url = wikidata_entity_url.rstrip('/')
        self.commons_file_path_url = commons_file_path_url.rstrip('/')
        self.image_width = image_width

    def commons_url(self, file_name: str) -> str:
        """Direct Commons URL for a P18 file name."""
        encoded = quote(file_name.replace(' ', '_'), safe='')
        return f"{self.commons_file_path_url}/{encoded}?width={self.image_width}"

    async def _artist_relations(self, artist_id: str) -> List[Dict[str, Any]]:
        try:
            status, data = await self.catalog_client.fetch_json(
                f"{self.musicbrainz_base_url}/artist/{artist_id}",
                params={'inc': 'url-rels', 'fmt': 'json'}
            )
        except UpstreamUnavailableError as e:
            logger.warning("Artist relations unavailable", artist_id=artist_id, error=str(e))
            return []

        if not isinstance(data, dict):
            logger.info("No artist relations", artist_id=artist_id, status_code=status)
            return []

        relations = data.get('relations') or []
        return relations if isinstance(relations, list) else []

    async def _wikidata_image(self, wikidata_url: str) -> Optional[str]:
        entity_id = wikidata_url.rstrip('/').split('/')[-1]
        if not entity_id:
            return None

        try:
            status, data = await self.linked_data_client.fetch_json(
                f"{self.wikidata_entity_url}/{entity_id}.json"
            )
        except UpstreamUnavailableError as e:
            logger.warning("Wikidata lookup failed", entity_id=entity_id, error=str(e))
            return None

        if data is None:
            logger.info("Wikidata entity unavailable", entity_id=entity_id, status_code=status)
            return None

        file_name = extract_image_claim(data, entity_id)
        if not file_name:
            logger.debug("Wikidata entity has no image claim", entity_id=entity_id)
            return None

        return self.commons_url(file_name)

    async def resolve(self, artist_id: str) -> Dict[str, Optional[str]]:
        """
        Resolve an artist image.

        Args:
            artist_id: MusicBrainz artist ID

        Returns:
            {"imageUrl": str | None, "source": "wikidata-derived" | "catalog-relation" | None}
        """
        try:
            relations = await self._artist_relations(artist_id)

            wikidata_url = find_relation(relations, 'wikidata')
            if wikidata_url:
                image_url = await self._wikidata_image(wikidata_url)
                if image_url:
                    return {'imageUrl': image_url, 'source': WIKIDATA_DERIVED}

            direct_url = find_relation(relations, 'image')
            if direct_url:
                return {'imageUrl': direct_url, 'source': CATALOG_RELATION}

        except Exception as e:
            logger.warning(
                "Artist image resolution failed",
                artist_id=artist_id,
                error=str(e),
                exc_info=True
            )

        return no_image()
