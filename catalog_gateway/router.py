"""
Catalog Request Router
======================

Per-request pipeline:

    Received -> Validated -> (AuthChecked) -> UpstreamAttempt(n)
        -> Success | TerminalFailure -> (CacheFallback if search) -> Responded

- Unknown actions, malformed ids and missing queries are rejected before any
  upstream traffic (400)
- Protected actions are authenticated before any upstream traffic (401)
- Upstream failures never surface as transport errors: the caller gets the
  payload, a degraded (cached or empty) search result, or ``{"error": ...}``
  with HTTP 200. ``degraded`` tells the HTTP layer which of these happened.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog
from prometheus_client import Counter

from .actions import ActionRegistry, ActionRequest, ActionSpec, COMPOSITE
from .auth import AuthGate
from .cache_manager import DegradedModeCache
from .errors import UpstreamUnavailableError
from .image_enrichment import ArtistImageResolver
from .upstream_client import ThrottledUpstreamClient

logger = structlog.get_logger(__name__)

gateway_responses_total = Counter(
    'catalog_gateway_responses_total',
    'Gateway responses by action and outcome',
    ['action', 'outcome']
)

PROVIDER_UNAVAILABLE = "Music data provider is temporarily unavailable. Please try again."

# Outcomes reported to the HTTP layer and metrics
OK = 'ok'
DEGRADED_CACHE = 'cache'
DEGRADED_EMPTY = 'empty'
UPSTREAM_ERROR = 'error'


@dataclass
class GatewayResponse:
    """Result of routing one request."""
    status_code: int
    body: Any
    outcome: str = OK

    @property
    def degraded(self) -> Optional[str]:
        return None if self.outcome == OK else self.outcome


class CatalogRouter:
    """
    Validates, authorizes and dispatches catalog actions.

    Usage:
        router = CatalogRouter(registry, auth_gate, upstream, cache, resolver, base_url)
        response = await router.handle(ActionRequest(action="search-artist", query="Radiohead"))
    """

    def __init__(
        self,
        registry: ActionRegistry,
        auth_gate: AuthGate,
        upstream: ThrottledUpstreamClient,
        cache: DegradedModeCache,
        image_resolver: ArtistImageResolver,
        musicbrainz_base_url: str
    ):
        self.registry = registry
        self.auth_gate = auth_gate
        self.upstream = upstream
        self.cache = cache
        self.image_resolver = image_resolver
        self.musicbrainz_base_url = musicbrainz_base_url.rstrip('/')

    async def handle(
        self,
        request: ActionRequest,
        authorization: Optional[str] = None
    ) -> GatewayResponse:
        """
        Route one request.

        Raises:
            InvalidRequestError: Unknown action or invalid parameters
            AuthenticationError: Protected action without a valid credential
        """
        spec = self.registry.get(request.action)
        validated = self.registry.validate(spec, request)

        await self.auth_gate.authorize(spec.name, authorization)

        logger.info(
            "Catalog request",
            action=spec.name,
            query=validated.query,
            id=validated.id,
            type=validated.type
        )

        if spec.kind == COMPOSITE:
            body = await self.image_resolver.resolve(validated.id)
            return self._respond(spec, GatewayResponse(200, body))

        return self._respond(spec, await self._proxy(spec, validated))

    async def _proxy(self, spec: ActionSpec, request: ActionRequest) -> GatewayResponse:
        call = spec.build(request)
        url = f"{self.musicbrainz_base_url}{call.path}"

        try:
            response = await self.upstream.fetch(url, params=call.params)
        except UpstreamUnavailableError as e:
            return self._upstream_failed(spec, request, e)

        if not response.is_success:
            logger.error(
                "MusicBrainz error",
                action=spec.name,
                status_code=response.status_code,
                reason=response.reason_phrase
            )
            return GatewayResponse(
                200,
                {'error': f'MusicBrainz API error: {response.status_code}'},
                UPSTREAM_ERROR
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("Invalid JSON from MusicBrainz", action=spec.name, error=str(e))
            return GatewayResponse(200, {'error': 'Invalid response from music data provider'}, UPSTREAM_ERROR)

        if spec.post_process is not None:
            data = spec.post_process(data, request)

        if spec.is_search:
            self.cache.store(spec.name, request.query, data)

        if isinstance(data, dict):
            logger.debug("MusicBrainz response received", action=spec.name, keys=list(data.keys()))

        return GatewayResponse(200, data)

    def _upstream_failed(
        self,
        spec: ActionSpec,
        request: ActionRequest,
        error: UpstreamUnavailableError
    ) -> GatewayResponse:
        if spec.is_search:
            payload, source = self.cache.fallback(spec.name, request.query)
            logger.warning(
                "Serving degraded search result",
                action=spec.name,
                source=source,
                error=str(error.last_error)
            )
            return GatewayResponse(200, payload, source)

        logger.error("Music data provider unavailable", action=spec.name, attempts=error.attempts)
        return GatewayResponse(200, {'error': PROVIDER_UNAVAILABLE}, UPSTREAM_ERROR)

    @staticmethod
    def _respond(spec: ActionSpec, response: GatewayResponse) -> GatewayResponse:
        gateway_responses_total.labels(action=spec.name, outcome=response.outcome).inc()
        return response
