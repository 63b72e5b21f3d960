"""
In-memory knowledge service for tests and local development.
The service answers the same endpoints as the real API and is plugged into a
``KnowledgeClient`` through ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import json
import random
import typing as t
from datetime import datetime, timezone

import httpx
import structlog
from pydantic import ValidationError

from fetchbrain.client import KnowledgeClient
from fetchbrain.config import FetchBrainConfig
from fetchbrain.models import (
    QueryRequest,
    QueryResponse,
    QueryResultItem,
    StatsResponse,
    TeachRequest,
    TeachResponse,
    TeachVerification,
    UsageStats,
)

log = structlog.get_logger(__name__)

MOCK_API_KEY = "test_mock_key"
MOCK_BASE_URL = "http://localhost:3456"
ACCEPTED_KEY_PREFIXES = ("test_", "fb_")


class MockKnowledgeService:
    """
    Emulate the knowledge service API.

    Parameters
    ----------
    initial_knowledge : dict[str, dict] | None, optional
        URL -> data pairs the service knows from the start.
    latency_seconds : float, optional
        Delay applied to every call.
    failure_rate : float, optional
        Probability for each call to answer with a 500.
    """

    def __init__(
        self,
        initial_knowledge: dict[str, dict[str, t.Any]] | None = None,
        *,
        latency_seconds: float = 0.0,
        failure_rate: float = 0.0,
    ) -> None:
        self._knowledge: dict[str, tuple[dict[str, t.Any], str]] = {}
        self.stats = UsageStats()
        self.latency_seconds = latency_seconds
        self.failure_rate = failure_rate
        self.request_log: list[tuple[str, str, t.Any]] = []
        self._forced_failures = 0
        self._random = random.Random()
        if initial_knowledge:
            self.seed(initial_knowledge)

    @staticmethod
    def _now() -> str:
        return datetime.now(tz=timezone.utc).isoformat()

    def seed(self, entries: dict[str, dict[str, t.Any]]) -> None:
        for url, data in entries.items():
            self._knowledge[url] = (data, self._now())

    def clear(self) -> None:
        """Forget all knowledge and reset usage counters."""
        self._knowledge.clear()
        self.stats.reset()

    def has(self, url: str) -> bool:
        return url in self._knowledge

    @property
    def knowledge_size(self) -> int:
        return len(self._knowledge)

    def fail_next(self, count: int = 1) -> None:
        """Answer the next ``count`` API calls with a 500."""
        self._forced_failures += count

    def calls(self, path: str) -> list[t.Any]:
        """Bodies of the logged calls made to ``path``."""
        return [body for _, logged_path, body in self.request_log if logged_path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(handler=self.handle)

    def _json_response(self, *, status_code: int, payload: dict[str, t.Any]) -> httpx.Response:
        return httpx.Response(status_code=status_code, json=payload)

    def _should_fail(self) -> bool:
        if self._forced_failures > 0:
            self._forced_failures -= 1
            return True
        return self.failure_rate > 0 and self._random.random() < self.failure_rate

    async def handle(self, request: httpx.Request) -> httpx.Response:
        """
        Route a request to the matching endpoint.

        Parameters
        ----------
        request : httpx.Request
            Incoming HTTP request.

        Returns
        -------
        httpx.Response
            Endpoint response.
        """
        if self.latency_seconds > 0:
            await asyncio.sleep(delay=self.latency_seconds)

        authorization = request.headers.get("authorization", "")
        if not authorization.startswith("Bearer "):
            return self._json_response(
                status_code=401, payload={"error": "Missing or invalid API key"}
            )
        if not authorization.removeprefix("Bearer ").startswith(ACCEPTED_KEY_PREFIXES):
            return self._json_response(status_code=401, payload={"error": "Invalid API key format"})

        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.request_log.append((request.method, path, body))

        if self._should_fail():
            return self._json_response(status_code=500, payload={"error": "Simulated API failure"})

        routes: dict[tuple[str, str], t.Callable[[t.Any], httpx.Response]] = {
            ("POST", "/v1/query"): self._query,
            ("POST", "/v1/learn"): self._learn,
            ("GET", "/v1/stats"): self._stats,
            ("GET", "/health"): self._health,
            ("POST", "/reset"): self._reset,
        }
        route = routes.get((request.method, path))
        if route is None:
            return self._json_response(status_code=404, payload={"error": f"Unknown route {path}"})
        return route(body)

    def _query(self, body: t.Any) -> httpx.Response:
        try:
            query = QueryRequest.model_validate(body)
        except ValidationError:
            return self._json_response(status_code=400, payload={"error": "urls array is required"})

        self.stats.queries += len(query.urls)
        response = QueryResponse()
        for url in query.urls:
            known = self._knowledge.get(url)
            if known is None:
                response.unknown.append(url)
                continue
            data, learned_at = known
            self.stats.recognized += 1
            response.known.append(
                QueryResultItem(
                    url=url,
                    data=data,
                    confidence=round(self._random.uniform(0.95, 0.99), 4),
                    learned_at=learned_at,
                )
            )
        log.debug(
            event="Mock query",
            url_count=len(query.urls),
            known_count=len(response.known),
        )
        return self._json_response(
            status_code=200, payload=response.model_dump(mode="json", by_alias=True)
        )

    def _learn(self, body: t.Any) -> httpx.Response:
        try:
            teach = TeachRequest.model_validate(body)
        except ValidationError:
            return self._json_response(
                status_code=400, payload={"error": "entries array is required"}
            )

        learned = 0
        duplicate = False
        for entry in teach.entries:
            if not entry.url or not entry.data:
                continue
            previous = self._knowledge.get(entry.url)
            duplicate = duplicate or (previous is not None and previous[0] == entry.data)
            self._knowledge[entry.url] = (entry.data, self._now())
            learned += 1
        self.stats.learned += learned

        response = TeachResponse(
            status="accepted",
            learned=learned,
            verification=TeachVerification(
                schema_valid=True, values_valid=True, duplicate=duplicate, warnings=[]
            ),
        )
        return self._json_response(
            status_code=200, payload=response.model_dump(mode="json", by_alias=True)
        )

    def _stats(self, body: t.Any) -> httpx.Response:
        response = StatsResponse(
            queries=self.stats.queries,
            recognized=self.stats.recognized,
            recognition_rate=self.stats.recognition_rate,
            learned=self.stats.learned,
            period=datetime.now(tz=timezone.utc).strftime("%Y-%m"),
        )
        return self._json_response(
            status_code=200, payload=response.model_dump(mode="json", by_alias=True)
        )

    def _health(self, body: t.Any) -> httpx.Response:
        return self._json_response(
            status_code=200,
            payload={
                "status": "healthy",
                "knowledgeSize": self.knowledge_size,
                "stats": self.stats.model_dump(),
            },
        )

    def _reset(self, body: t.Any) -> httpx.Response:
        self.clear()
        return self._json_response(status_code=200, payload={"status": "reset"})


def create_mock_config(**overrides: t.Any) -> FetchBrainConfig:
    """Configuration pointing at the mock service."""
    values: dict[str, t.Any] = {
        "api_key": MOCK_API_KEY,
        "base_url": MOCK_BASE_URL,
        "timeout_seconds": 5.0,
        "debug": False,
    }
    values.update(overrides)
    return FetchBrainConfig(**values)


def create_mock_client(
    service: MockKnowledgeService | None = None,
    *,
    clock: t.Callable[[], float] | None = None,
    **overrides: t.Any,
) -> KnowledgeClient:
    """
    Client wired to an in-memory service.

    Parameters
    ----------
    service : MockKnowledgeService | None, optional
        Service to answer requests; a fresh one is created when omitted.
    clock : typing.Callable[[], float] | None, optional
        Time source for the circuit breaker.
    **overrides : typing.Any
        Configuration overrides.
    """
    service = service or MockKnowledgeService()
    return KnowledgeClient(
        config=create_mock_config(**overrides),
        transport=service.transport(),
        clock=clock,
    )
