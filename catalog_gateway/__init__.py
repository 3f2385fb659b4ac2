"""
Catalog Gateway
===============

Rate-limited, retrying, degraded-mode-caching proxy for the MusicBrainz
catalog API.

This module provides:
- RateGate: process-wide minimum gap between upstream calls
- ThrottledUpstreamClient: rate-gated GET client with retries and backoff
- DegradedModeCache: in-memory fallback for failed search actions
- AuthGate: bearer verification for protected actions
- ActionRegistry: the table of supported catalog actions
- ArtistImageResolver: licence-safe artist image lookup
- CatalogRouter: the per-request pipeline tying them together
"""

from .actions import ActionRegistry, ActionRequest, ActionSpec, build_default_registry
from .auth import AuthGate, CallerIdentity
from .cache_manager import DegradedModeCache, empty_result, normalize_query
from .config import GatewaySettings, get_settings
from .errors import (
    AuthenticationError,
    GatewayError,
    InvalidRequestError,
    UpstreamUnavailableError,
)
from .image_enrichment import ArtistImageResolver
from .rate_limiter import RateGate
from .router import CatalogRouter, GatewayResponse
from .upstream_client import RetryConfig, ThrottledUpstreamClient

__all__ = [
    'ActionRegistry',
    'ActionRequest',
    'ActionSpec',
    'build_default_registry',
    'AuthGate',
    'CallerIdentity',
    'DegradedModeCache',
    'empty_result',
    'normalize_query',
    'GatewaySettings',
    'get_settings',
    'AuthenticationError',
    'GatewayError',
    'InvalidRequestError',
    'UpstreamUnavailableError',
    'ArtistImageResolver',
    'RateGate',
    'CatalogRouter',
    'GatewayResponse',
    'RetryConfig',
    'ThrottledUpstreamClient',
]

__version__ = '1.0.0'
