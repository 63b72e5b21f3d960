import pytest

from fetchbrain.client import KnowledgeClient
from fetchbrain.context import active_scope
from fetchbrain.mock import MockKnowledgeService, create_mock_client


@pytest.fixture(autouse=True)
def test_set_env(monkeypatch):
    monkeypatch.setenv("FETCHBRAIN_API_KEY", "test_env_key")
    monkeypatch.delenv("FETCHBRAIN_BASE_URL", raising=False)


@pytest.fixture
def reset_context():
    """Make sure no request scope leaks between tests."""
    token = active_scope.set(None)
    yield
    active_scope.reset(token)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service() -> MockKnowledgeService:
    return MockKnowledgeService()


@pytest.fixture
def client(service: MockKnowledgeService, clock: FakeClock) -> KnowledgeClient:
    return create_mock_client(service, clock=clock, batch_max_wait_seconds=0.01)
