"""
Shared fixtures.

The application modules read their settings at import time, so the test
environment is set up before anything from ``qrmenu`` is imported.
"""

import os
import tempfile

_TEST_DB = os.path.join(tempfile.gettempdir(), f"qrmenu-test-{os.getpid()}.db")

os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB}"
os.environ["LEDGER_EXPORT_ENABLED"] = "false"
os.environ["REQUIRE_TABLE_NUMBER"] = "true"
os.environ.pop("OWNER_TOKEN_SECRET", None)

import pytest  # noqa: E402

from qrmenu.core.config import Settings, get_settings  # noqa: E402
from qrmenu.database import build_engine, build_session_maker, init_db  # noqa: E402
from qrmenu.services.gateways import (  # noqa: E402
    OrderIntakeGateway,
    StatusUpdateGateway,
    reset_gateways,
)
from qrmenu.services.realtime import (  # noqa: E402
    ClientConnection,
    EventBroadcaster,
    GroupRegistry,
    InMemoryBroadcastBackend,
    reset_realtime,
)
from qrmenu.services.store import OrderStore, reset_order_store  # noqa: E402


def _reset_singletons():
    reset_gateways()
    reset_realtime()
    reset_order_store()
    get_settings.cache_clear()


@pytest.fixture(scope="session", autouse=True)
def _test_database():
    yield
    if os.path.exists(_TEST_DB):
        os.remove(_TEST_DB)


@pytest.fixture(autouse=True)
def _fresh_singletons():
    _reset_singletons()
    yield
    _reset_singletons()


# =============================================================================
# STORAGE
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return OrderStore(build_session_maker(engine), default_customer_name="Guest")


# =============================================================================
# REAL-TIME
# =============================================================================

@pytest.fixture
def registry():
    return GroupRegistry()


@pytest.fixture
def broadcaster(registry):
    return EventBroadcaster(InMemoryBroadcastBackend(registry))


@pytest.fixture
def connect(registry):
    """Factory for connections joined to a restaurant room."""

    def _connect(restaurant_id=None):
        conn = ClientConnection()
        if restaurant_id is not None:
            registry.join(conn, restaurant_id)
        return conn

    return _connect


@pytest.fixture
def drain():
    """Pops every event queued on a connection so far."""

    def _drain(conn):
        events = []
        while not conn.outbox.empty():
            event = conn.outbox.get_nowait()
            if event is not None:
                events.append(event)
        return events

    return _drain


# =============================================================================
# GATEWAYS
# =============================================================================

@pytest.fixture
def settings():
    return Settings(owner_token_secret=None, ledger_export_enabled=False)


@pytest.fixture
def intake(store, broadcaster, settings):
    return OrderIntakeGateway(store, broadcaster, settings=settings)


@pytest.fixture
def status_gateway(store, broadcaster, settings):
    return StatusUpdateGateway(store, broadcaster, settings=settings)


@pytest.fixture
def owner_secret(monkeypatch):
    """Turn on owner-token checks for the application singletons."""
    monkeypatch.setenv("OWNER_TOKEN_SECRET", "test-owner-secret")
    _reset_singletons()
    return "test-owner-secret"
