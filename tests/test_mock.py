"""
Tests for the in-memory knowledge service in fetchbrain.mock.
"""

import typing as t

import httpx
import pytest

from fetchbrain.mock import MOCK_BASE_URL, MockKnowledgeService


@pytest.fixture
def http_factory(service: MockKnowledgeService) -> t.Callable[..., httpx.AsyncClient]:
    def factory(api_key: str | None = "test_key") -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        return httpx.AsyncClient(
            base_url=MOCK_BASE_URL, headers=headers, transport=service.transport()
        )

    return factory


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("api_key", "status_code"),
    [(None, 401), ("bad-key", 401), ("test_key", 200), ("fb_live_key", 200)],
)
async def test_authentication(http_factory, api_key, status_code) -> None:
    async with http_factory(api_key=api_key) as http:
        response = await http.get("/health")

    assert response.status_code == status_code


@pytest.mark.asyncio
async def test_unauthorized_calls_are_not_logged(service, http_factory) -> None:
    async with http_factory(api_key=None) as http:
        await http.post("/v1/query", json={"urls": ["https://example.com"]})

    assert service.request_log == []
    assert service.stats.queries == 0


@pytest.mark.asyncio
async def test_query_reports_known_and_unknown(service, http_factory) -> None:
    service.seed({"https://example.com/1": {"title": "one"}})

    async with http_factory() as http:
        response = await http.post(
            "/v1/query", json={"urls": ["https://example.com/1", "https://example.com/2"]}
        )

    body = response.json()
    assert body["unknown"] == ["https://example.com/2"]
    [known] = body["known"]
    assert known["url"] == "https://example.com/1"
    assert known["data"] == {"title": "one"}
    assert 0.95 <= known["confidence"] <= 0.99
    assert "learnedAt" in known
    assert service.stats.queries == 2
    assert service.stats.recognized == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("path", "payload"),
    [("/v1/query", {"urls": "not-a-list"}), ("/v1/learn", {"entries": None})],
)
async def test_invalid_payload_is_bad_request(http_factory, path, payload) -> None:
    async with http_factory() as http:
        response = await http.post(path, json=payload)

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.asyncio
async def test_learn_flags_duplicates(service, http_factory) -> None:
    entry = {"url": "https://example.com", "data": {"title": "X"}}

    async with http_factory() as http:
        first = await http.post("/v1/learn", json={"entries": [entry]})
        second = await http.post("/v1/learn", json={"entries": [entry]})

    assert first.json()["verification"]["duplicate"] is False
    assert second.json()["verification"]["duplicate"] is True
    assert second.json()["verification"]["schemaValid"] is True
    assert service.stats.learned == 2
    assert service.knowledge_size == 1


@pytest.mark.asyncio
async def test_learn_skips_entries_without_data(service, http_factory) -> None:
    async with http_factory() as http:
        response = await http.post(
            "/v1/learn", json={"entries": [{"url": "https://example.com", "data": {}}]}
        )

    assert response.json()["learned"] == 0
    assert not service.has("https://example.com")


@pytest.mark.asyncio
async def test_stats_health_and_reset(service, http_factory) -> None:
    service.seed({"https://example.com": {"a": 1}})

    async with http_factory() as http:
        await http.post("/v1/query", json={"urls": ["https://example.com", "https://b.test"]})
        stats = (await http.get("/v1/stats")).json()
        health = (await http.get("/health")).json()
        reset = await http.post("/reset")

    assert stats["queries"] == 2
    assert stats["recognitionRate"] == pytest.approx(0.5)
    assert len(stats["period"]) == 7
    assert health["status"] == "healthy"
    assert health["knowledgeSize"] == 1
    assert reset.json() == {"status": "reset"}
    assert service.knowledge_size == 0
    assert service.stats.queries == 0


@pytest.mark.asyncio
async def test_fail_next_and_failure_rate(service, http_factory) -> None:
    service.fail_next(count=2)

    async with http_factory() as http:
        statuses = [(await http.get("/health")).status_code for _ in range(3)]
        service.failure_rate = 1.0
        always_failing = (await http.get("/health")).status_code

    assert statuses == [500, 500, 200]
    assert always_failing == 500


@pytest.mark.asyncio
async def test_unknown_route(http_factory) -> None:
    async with http_factory() as http:
        response = await http.get("/v2/unknown")

    assert response.status_code == 404


def test_seed_has_and_clear() -> None:
    service = MockKnowledgeService(initial_knowledge={"https://example.com": {"a": 1}})

    assert service.has("https://example.com")
    assert service.knowledge_size == 1

    service.clear()

    assert not service.has("https://example.com")
    assert service.knowledge_size == 0
