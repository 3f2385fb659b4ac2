"""
Pytest configuration and shared fixtures for catalog gateway testing.
"""

from typing import Any, Callable, List, Optional, Tuple

import httpx
import pytest

from catalog_gateway.config import GatewaySettings

RADIOHEAD_ID = "a74b1b7f-71a5-4011-9441-d0b5e4122711"
OK_COMPUTER_ID = "b1392450-e666-3926-a536-22c65f834433"


class RecordingUpstream:
    """
    Scriptable stand-in for MusicBrainz / Wikidata behind httpx.MockTransport.

    Responses are queued per URL fragment; the last queued response repeats.
    A queued exception class is raised with the request attached, which is how
    httpx surfaces network failures.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: List[Tuple[str, List[Any]]] = []

    def on(self, fragment: str, *responses: Any) -> "RecordingUpstream":
        self._routes.append((fragment, list(responses)))
        return self

    def calls(self, fragment: Optional[str] = None) -> List[httpx.Request]:
        if fragment is None:
            return list(self.requests)
        return [r for r in self.requests if fragment in str(r.url)]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        for fragment, queue in self._routes:
            if fragment not in str(request.url):
                continue
            item = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(item, type) and issubclass(item, Exception):
                raise item("simulated network failure", request=request)
            if callable(item):
                return item(request)
            # fresh copy, a repeated response may already have been closed
            return httpx.Response(item.status_code, headers=item.headers, content=item.content)

        return httpx.Response(404, json={"error": "Not Found"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream() -> RecordingUpstream:
    """Recording upstream with no routes configured."""
    return RecordingUpstream()


@pytest.fixture
def recorded_sleeps() -> Tuple[List[float], Callable]:
    """Sleep replacement that records requested delays and returns immediately."""
    delays: List[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    return delays, fake_sleep


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    """Settings with throttling and backoff disabled for fast tests."""
    return GatewaySettings(
        min_request_interval=0.0,
        initial_backoff=0.0,
        request_timeout=5.0,
        enable_metrics=False,
        log_level="WARNING",
    )


@pytest.fixture
def sample_artist_search():
    """Artist search payload in upstream order (not score-sorted)."""
    return {
        "created": "2024-01-01T00:00:00.000Z",
        "count": 2,
        "offset": 0,
        "artists": [
            {"id": "11111111-1111-1111-1111-111111111111", "name": "Radiohead Tribute", "score": 50},
            {"id": RADIOHEAD_ID, "name": "Radiohead", "score": 90},
        ],
    }


@pytest.fixture
def sample_wikidata_entity():
    """Wikidata EntityData document with a P18 image claim."""
    return {
        "entities": {
            "Q44190": {
                "id": "Q44190",
                "claims": {
                    "P18": [
                        {
                            "mainsnak": {
                                "datavalue": {
                                    "value": "Radiohead live 2016.jpg",
                                    "type": "string"
                                }
                            }
                        }
                    ]
                }
            }
        }
    }
