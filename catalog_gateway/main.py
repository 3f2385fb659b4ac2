"""
Catalog Gateway Service
=======================

Server-side proxy in front of the MusicBrainz web service with:
- A single RPC-style endpoint taking {action, query, id, type, limit, offset}
- Process-wide 1.1s rate gate for all upstream calls
- Retries with exponential backoff honoring Retry-After
- In-memory degraded-mode cache for search actions
- Config-driven bearer authentication for protected actions
- Licence-safe artist image resolution (Wikidata / Commons)
- Prometheus metrics and structured JSON logs

Every catalog outcome is answered with HTTP 200 so the caller's RPC layer
never mistakes an upstream problem for a transport failure; only invalid
requests (400) and failed authentication (401) use other statuses.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, make_asgi_app
from pydantic import BaseModel, ConfigDict, ValidationError

from .actions import ActionRegistry, ActionRequest, build_default_registry
from .auth import AuthGate
from .cache_manager import DegradedModeCache
from .config import GatewaySettings, get_settings
from .errors import GatewayError
from .image_enrichment import ArtistImageResolver
from .logging_config import configure_logging
from .rate_limiter import RateGate
from .router import CatalogRouter
from .upstream_client import RetryConfig, ThrottledUpstreamClient

logger = structlog.get_logger(__name__)

requests_total = Counter(
    'catalog_gateway_requests_total',
    'Inbound gateway requests',
    ['action', 'status']
)

DEGRADED_HEADER = 'X-Gateway-Degraded'


class GatewayRequest(BaseModel):
    """Inbound RPC body."""
    model_config = ConfigDict(extra='ignore')

    action: Optional[str] = None
    query: Optional[str] = None
    id: Optional[str] = None
    type: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None


@dataclass
class GatewayServices:
    """Shared per-process components."""
    settings: GatewaySettings
    http_client: httpx.AsyncClient
    rate_gate: RateGate
    catalog_client: ThrottledUpstreamClient
    linked_data_client: ThrottledUpstreamClient
    cache: DegradedModeCache
    registry: ActionRegistry
    auth_gate: AuthGate
    router: CatalogRouter
    owns_http_client: bool = True

    async def aclose(self) -> None:
        await self.auth_gate.aclose()
        if self.owns_http_client:
            await self.http_client.aclose()


def build_services(
    settings: GatewaySettings,
    http_client: Optional[httpx.AsyncClient] = None
) -> GatewayServices:
    """Wire the gateway components for one process."""
    owns_http_client = http_client is None
    http_client = http_client or httpx.AsyncClient(follow_redirects=True)

    retry_config = RetryConfig(
        max_attempts=settings.max_attempts,
        initial_delay=settings.initial_backoff,
        max_delay=settings.max_backoff,
        timeout=settings.request_timeout,
        retry_on_status_codes=set(settings.retry_status_codes)
    )

    rate_gate = RateGate(settings.min_request_interval, name='musicbrainz')
    catalog_client = ThrottledUpstreamClient(
        rate_gate=rate_gate,
        user_agent=settings.user_agent,
        config=retry_config,
        http_client=http_client,
        name='musicbrainz'
    )
    # Linked-data hops do not spend catalog quota
    linked_data_client = ThrottledUpstreamClient(
        rate_gate=RateGate(0.0, name='wikidata'),
        user_agent=settings.user_agent,
        config=retry_config,
        http_client=http_client,
        name='wikidata'
    )

    cache = DegradedModeCache(ttl=settings.search_cache_ttl)
    registry = build_default_registry(
        default_search_limit=settings.default_search_limit,
        max_page_size=settings.max_page_size,
        artist_search_top_n=settings.artist_search_top_n
    )

    unknown = set(settings.protected_actions) - set(registry.names())
    if unknown:
        raise ValueError(f"Unknown protected actions: {sorted(unknown)}")

    auth_gate = AuthGate(
        protected_actions=settings.protected_actions,
        introspection_url=settings.auth_introspection_url,
        api_key=settings.auth_api_key,
        http_client=http_client,
        timeout=settings.request_timeout
    )
    resolver = ArtistImageResolver(
        catalog_client=catalog_client,
        linked_data_client=linked_data_client,
        musicbrainz_base_url=settings.musicbrainz_base_url,
        wikidata_entity_url=settings.wikidata_entity_url,
        commons_file_path_url=settings.commons_file_path_url,
        image_width=settings.image_width
    )
    router = CatalogRouter(
        registry=registry,
        auth_gate=auth_gate,
        upstream=catalog_client,
        cache=cache,
        image_resolver=resolver,
        musicbrainz_base_url=settings.musicbrainz_base_url
    )

    return GatewayServices(
        settings=settings,
        http_client=http_client,
        rate_gate=rate_gate,
        catalog_client=catalog_client,
        linked_data_client=linked_data_client,
        cache=cache,
        registry=registry,
        auth_gate=auth_gate,
        router=router,
        owns_http_client=owns_http_client
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': message})


def create_app(
    settings: Optional[GatewaySettings] = None,
    http_client: Optional[httpx.AsyncClient] = None
) -> FastAPI:
    """Create the gateway application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings, http_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Catalog gateway starting",
            service=settings.service_name,
            version=settings.service_version,
            min_request_interval=settings.min_request_interval,
            protected_actions=sorted(settings.protected_actions)
        )
        yield
        logger.info("Shutting down catalog gateway")
        await services.aclose()

    app = FastAPI(
        title="Catalog Gateway",
        description="Rate-limited proxy for the MusicBrainz catalog API",
        version=settings.service_version,
        lifespan=lifespan
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    if settings.enable_metrics:
        app.mount("/metrics", make_asgi_app())

    async def catalog_endpoint(request: Request):
        """
        Catalog RPC endpoint.

        Request Body (JSON):
            action (str, required): One of the registered actions
            query (str): Search text for search-* actions
            id (str): MusicBrainz ID for entity actions
            type (str): Release types for get-artist-releases
            limit (int): Page size, clamped to [1, 100]
            offset (int): Page offset

        Returns:
            Upstream payload, degraded search payload, or {"error": ...}
        """
        structlog.contextvars.clear_contextvars()

        try:
            raw = await request.json()
        except ValueError:
            requests_total.labels(action='unknown', status='400').inc()
            return _error(400, 'Invalid request body')

        if not isinstance(raw, dict):
            requests_total.labels(action='unknown', status='400').inc()
            return _error(400, 'Invalid request body')

        try:
            body = GatewayRequest.model_validate(raw)
        except ValidationError as e:
            logger.info("Rejected request parameters", errors=e.errors(include_url=False))
            requests_total.labels(action='unknown', status='400').inc()
            return _error(400, 'Invalid request parameters')

        action_label = body.action if body.action in services.registry else 'unknown'
        structlog.contextvars.bind_contextvars(action=action_label)

        try:
            result = await services.router.handle(
                ActionRequest(**body.model_dump()),
                authorization=request.headers.get('authorization')
            )
        except GatewayError as e:
            requests_total.labels(action=action_label, status=str(e.status_code)).inc()
            logger.info("Request rejected", status_code=e.status_code, reason=e.message)
            return _error(e.status_code, e.message)
        except Exception as e:
            logger.error("Catalog gateway error", error=str(e), exc_info=True)
            requests_total.labels(action=action_label, status='200').inc()
            return JSONResponse(
                status_code=200,
                content={'error': 'Internal gateway error'},
                headers={DEGRADED_HEADER: 'error'}
            )

        requests_total.labels(action=action_label, status=str(result.status_code)).inc()
        headers = {DEGRADED_HEADER: result.degraded} if result.degraded else None
        return JSONResponse(status_code=result.status_code, content=result.body, headers=headers)

    app.add_api_route("/musicbrainz", catalog_endpoint, methods=["POST"])
    app.add_api_route("/", catalog_endpoint, methods=["POST"], include_in_schema=False)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "version": settings.service_version,
            "actions": services.registry.names(),
            "protected_actions": sorted(services.auth_gate.protected_actions),
            "rate_gate": services.rate_gate.get_stats(),
            "cache": services.cache.get_stats()
        }

    @app.get("/admin/cache/stats")
    async def get_cache_stats():
        """Get degraded-mode cache statistics."""
        return services.cache.get_stats()

    return app


app = create_app()

