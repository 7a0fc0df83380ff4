"""Shared test fixtures: in-memory storage, a fake WebSocket, a fake server."""
import pytest
import pytest_asyncio

from fakes import ME, FakeConnector, HistoryServer
from whirl.api.client import ApiClient
from whirl.auth.service import AuthContext
from whirl.config import WhirlConfig
from whirl.connection.manager import ConnectionManager
from whirl.storage.local_store import LocalStore


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config() -> WhirlConfig:
    cfg = WhirlConfig()
    cfg.liveness.probe_delay_seconds = 0.01
    cfg.liveness.probe_timeout_seconds = 0.5
    cfg.friend_chat.sent_delay_seconds = 0.02
    cfg.storage.path = ":memory:"
    return cfg


@pytest.fixture
def store():
    local_store = LocalStore(":memory:")
    yield local_store
    local_store.close()


@pytest.fixture
def auth(store) -> AuthContext:
    context = AuthContext(store)
    context.authenticate("test-token", {"id": ME, "username": "me"})
    return context


@pytest.fixture
def history_server() -> HistoryServer:
    return HistoryServer()


@pytest_asyncio.fixture
async def api(config, auth, history_server):
    client = ApiClient(config, auth, transport=history_server.transport)
    yield client
    await client.close()


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest_asyncio.fixture
async def connection(config, auth, api, connector):
    manager = ConnectionManager(config, auth, api, connector=connector)
    yield manager
    await manager.close()
