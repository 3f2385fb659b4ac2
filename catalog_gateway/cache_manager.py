"""
Degraded-Mode Search Cache
==========================

In-memory, time-boxed cache of successful search responses.

The cache is write-through on every successful search and read only when the
upstream call ultimately fails, so discovery screens get stale-but-valid data
(or an empty, correctly shaped result) instead of an error.

- Key: (action, normalized query)
- Entry valid while now - captured_at < ttl; stale entries are ignored on
  read and overwritten by the next success, never swept
- Process-lifetime only; a restart clears it
"""

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import structlog
from prometheus_client import Counter

logger = structlog.get_logger(__name__)

# Prometheus metrics
cache_hits_total = Counter(
    'catalog_gateway_cache_hits_total',
    'Degraded-mode cache hits',
    ['action']
)
cache_misses_total = Counter(
    'catalog_gateway_cache_misses_total',
    'Degraded-mode cache misses (empty result served)',
    ['action']
)

_WHITESPACE = re.compile(r"\s+")

# Collection field returned by each search action
SEARCH_COLLECTIONS: Dict[str, str] = {
    'search-artist': 'artists',
    'search-release': 'releases',
    'search-release-group': 'release-groups',
    'search-recording': 'recordings',
}


def normalize_query(query: Optional[str]) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    if not query:
        return ""
    return _WHITESPACE.sub(" ", query.strip()).lower()


def empty_result(action: str) -> Dict[str, Any]:
    """
    Build a minimal, schema-valid empty search response.

    Args:
        action: Search action name

    Returns:
        {"count": 0, "offset": 0, "<collection>": []}
    """
    collection = SEARCH_COLLECTIONS.get(action)
    if collection is None:
        raise KeyError(f"No empty result shape for action: {action}")
    return {'count': 0, 'offset': 0, collection: []}


@dataclass
class CacheEntry:
    """A captured upstream payload."""
    captured_at: float
    payload: Any


class DegradedModeCache:
    """
    Process-wide fallback cache for search actions.

    Usage:
        cache = DegradedModeCache(ttl=600)
        cache.store("search-artist", "Radiohead", payload)
        ...
        body, source = cache.fallback("search-artist", " radiohead ")
    """

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic):
        """
        Initialize cache.

        Args:
            ttl: Seconds an entry stays usable
            clock: Monotonic time source
        """
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str], CacheEntry] = {}
        self.stats = {
            'hits': 0,
            'misses': 0,
            'stores': 0
        }

    @staticmethod
    def _key(action: str, query: Optional[str]) -> Tuple[str, str]:
        return action, normalize_query(query)

    def store(self, action: str, query: Optional[str], payload: Any) -> None:
        """Capture a successful payload, replacing any previous entry."""
        key = self._key(action, query)
        self._entries[key] = CacheEntry(captured_at=self._clock(), payload=payload)
        self.stats['stores'] += 1
        logger.debug("Cache WRITE", action=action, query=key[1])

    def lookup(self, action: str, query: Optional[str]) -> Optional[Any]:
        """
        Return the cached payload if it is still fresh.

        Args:
            action: Search action name
            query: Raw caller query

        Returns:
            Payload or None when missing or stale
        """
        key = self._key(action, query)
        entry = self._entries.get(key)
        if entry is None:
            return None

        age = self._clock() - entry.captured_at
        if age >= self.ttl:
            logger.debug("Cache entry stale", action=action, query=key[1], age=round(age, 1))
            return None

        return entry.payload

    def fallback(self, action: str, query: Optional[str]) -> Tuple[Any, str]:
        """
        Produce a degraded response for a failed search.

        Returns:
            (payload, source) where source is "cache" or "empty"
        """
        payload = self.lookup(action, query)

        if payload is not None:
            self.stats['hits'] += 1
            cache_hits_total.labels(action=action).inc()
            logger.info("Serving cached search result", action=action)
            return payload, 'cache'

        self.stats['misses'] += 1
        cache_misses_total.labels(action=action).inc()
        logger.info("Serving empty search result", action=action)
        return empty_result(action), 'empty'

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def get_stats(self) -> dict:
        """Get cache statistics for monitoring."""
        total = self.stats['hits'] + self.stats['misses']
        return {
            **self.stats,
            'entries': len(self._entries),
            'ttl_seconds': self.ttl,
            'hit_ratio': self.stats['hits'] / total if total > 0 else 0.0
        }
