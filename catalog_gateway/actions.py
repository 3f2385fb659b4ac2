"""
Catalog Action Registry
=======================

Table of the gateway's named operations. Each action declares its kind,
parameter contract, upstream path/query builder and optional response
post-processor, so adding an action never touches the shared dispatch code.

Kinds:
- search: free-text query, degraded-mode cache fallback on upstream failure
- lookup: operates on one catalog entity identified by an MBID
- composite: handled by a dedicated resolver instead of a single upstream GET
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from .cache_manager import SEARCH_COLLECTIONS
from .errors import InvalidRequestError

SEARCH = 'search'
LOOKUP = 'lookup'
COMPOSITE = 'composite'

# MusicBrainz identifiers are lowercase UUIDs
MBID_PATTERN = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$',
    re.IGNORECASE
)

DEFAULT_RELEASE_TYPES = 'album|single|ep|compilation|live|remix'


@dataclass
class ActionRequest:
    """Validated caller parameters handed to URL builders."""
    action: str
    query: Optional[str] = None
    id: Optional[str] = None
    type: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass
class UpstreamCall:
    """Path (relative to the catalog root) and query string for one action."""
    path: str
    params: Dict[str, Any]


@dataclass
class ActionSpec:
    """Declaration of one gateway action."""
    name: str
    kind: str
    build: Optional[Callable[[ActionRequest], UpstreamCall]] = None
    post_process: Optional[Callable[[Any, ActionRequest], Any]] = None
    default_limit: Optional[int] = None

    @property
    def requires_id(self) -> bool:
        return self.kind in (LOOKUP, COMPOSITE)

    @property
    def requires_query(self) -> bool:
        return self.kind == SEARCH

    @property
    def is_search(self) -> bool:
        return self.kind == SEARCH


def is_valid_mbid(value: Optional[str]) -> bool:
    return bool(value) and MBID_PATTERN.match(value) is not None


def clamp_limit(value: Optional[int], default: int, maximum: int = 100) -> int:
    """Clamp a caller page size into [1, maximum]."""
    if value is None:
        return default
    return max(1, min(int(value), maximum))


def clamp_offset(value: Optional[int]) -> int:
    if value is None:
        return 0
    return max(0, int(value))


def rerank_by_score(top_n: int) -> Callable[[Any, ActionRequest], Any]:
    """
    Build the artist-search post-processor.

    The upstream's default ordering is not always score-sorted; callers expect
    the best matches first. Sort by ``score`` descending (stable, missing = 0)
    and keep the first ``top_n``.
    """
    def _score(item: Dict[str, Any]) -> float:
        try:
            return float(item.get('score') or 0)
        except (TypeError, ValueError):
            return 0.0

    def post_process(payload: Any, request: ActionRequest) -> Any:
        if not isinstance(payload, dict) or not isinstance(payload.get('artists'), list):
            return payload
        ranked = sorted(payload['artists'], key=_score, reverse=True)
        return {**payload, 'artists': ranked[:top_n]}

    return post_process


def official_status(payload: Any, request: ActionRequest) -> Dict[str, Any]:
    """Reduce an official-release listing to a yes/no answer."""
    releases = payload.get('releases') if isinstance(payload, dict) else None
    count = payload.get('release-count', payload.get('count')) if isinstance(payload, dict) else None
    is_official = bool(releases) or bool(count)
    return {'id': request.id, 'isOfficial': is_official}


class ActionRegistry:
    """Name -> ActionSpec table with request validation."""

    def __init__(
        self,
        specs: Iterable[ActionSpec] = (),
        max_page_size: int = 100
    ):
        self.max_page_size = max_page_size
        self._specs: Dict[str, ActionSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ActionSpec) -> None:
        if spec.kind != COMPOSITE and spec.build is None:
            raise ValueError(f"Action {spec.name} needs an upstream builder")
        self._specs[spec.name] = spec

    def get(self, name: Optional[str]) -> ActionSpec:
        """
        Look up an action.

        Raises:
            InvalidRequestError: Unknown action
        """
        spec = self._specs.get(name) if isinstance(name, str) else None
        if spec is None:
            raise InvalidRequestError("Invalid action")
        return spec

    def names(self) -> List[str]:
        return sorted(self._specs)

    def __contains__(self, name: str) -> bool:
        return name in self._specs

    def validate(self, spec: ActionSpec, request: ActionRequest) -> ActionRequest:
        """
        Check parameters before any upstream quota is spent.

        Returns:
            A copy of the request with normalized query and clamped paging

        Raises:
            InvalidRequestError: Missing query, malformed id
        """
        query = request.query.strip() if isinstance(request.query, str) else None

        if spec.requires_query and not query:
            raise InvalidRequestError("Missing required parameter: query")

        if spec.requires_id and not is_valid_mbid(request.id):
            raise InvalidRequestError("Invalid MusicBrainz ID")

        limit = request.limit
        if spec.default_limit is not None or limit is not None:
            limit = clamp_limit(
                limit,
                default=spec.default_limit or self.max_page_size,
                maximum=self.max_page_size
            )

        return ActionRequest(
            action=spec.name,
            query=query,
            id=request.id.lower() if request.id else None,
            type=request.type.strip() if isinstance(request.type, str) and request.type.strip() else None,
            limit=limit,
            offset=clamp_offset(request.offset)
        )


def _search(entity: str) -> Callable[[ActionRequest], UpstreamCall]:
    def build(request: ActionRequest) -> UpstreamCall:
        params: Dict[str, Any] = {'query': request.query, 'fmt': 'json', 'limit': request.limit}
        if request.offset:
            params['offset'] = request.offset
        return UpstreamCall(path=f'/{entity}', params=params)
    return build


def _lookup(entity: str, includes: str) -> Callable[[ActionRequest], UpstreamCall]:
    def build(request: ActionRequest) -> UpstreamCall:
        return UpstreamCall(
            path=f'/{entity}/{request.id}',
            params={'inc': includes, 'fmt': 'json'}
        )
    return build


def _artist_releases(request: ActionRequest) -> UpstreamCall:
    params: Dict[str, Any] = {
        'artist': request.id,
        'type': request.type or DEFAULT_RELEASE_TYPES,
        'fmt': 'json',
        'limit': request.limit,
    }
    if request.offset:
        params['offset'] = request.offset
    return UpstreamCall(path='/release-group', params=params)


def _official_status(request: ActionRequest) -> UpstreamCall:
    return UpstreamCall(
        path='/release',
        params={
            'release-group': request.id,
            'status': 'official',
            'fmt': 'json',
            'limit': 1,
        }
    )


def build_default_registry(
    default_search_limit: int = 25,
    max_page_size: int = 100,
    artist_search_top_n: int = 15
) -> ActionRegistry:
    """Registry of every action the product uses."""
    searches = [
        ActionSpec(
            name=action,
            kind=SEARCH,
            build=_search(action[len('search-'):]),
            default_limit=default_search_limit,
            post_process=rerank_by_score(artist_search_top_n) if action == 'search-artist' else None,
        )
        for action in SEARCH_COLLECTIONS
    ]

    return ActionRegistry(
        [
            *searches,
            ActionSpec(
                name='get-artist',
                kind=LOOKUP,
                build=_lookup('artist', 'release-groups+genres+ratings+url-rels')
            ),
            ActionSpec(name='get-artist-image', kind=COMPOSITE),
            ActionSpec(
                name='get-artist-relations',
                kind=LOOKUP,
                build=_lookup('artist', 'artist-rels+url-rels')
            ),
            ActionSpec(
                name='get-release-group',
                kind=LOOKUP,
                build=_lookup('release-group', 'artists+releases+genres+ratings')
            ),
            ActionSpec(
                name='get-release',
                kind=LOOKUP,
                build=_lookup('release', 'artists+recordings+genres+ratings')
            ),
            ActionSpec(
                name='get-artist-releases',
                kind=LOOKUP,
                build=_artist_releases,
                default_limit=100
            ),
            ActionSpec(
                name='get-release-tracks',
                kind=LOOKUP,
                build=_lookup('release', 'recordings+artist-credits')
            ),
            ActionSpec(
                name='check-official-status',
                kind=LOOKUP,
                build=_official_status,
                post_process=official_status
            ),
        ],
        max_page_size=max_page_size
    )
