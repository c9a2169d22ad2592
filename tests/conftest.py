import asyncio
import os
from contextlib import asynccontextmanager

os.environ["TESTING"] = "1"
os.environ.pop("DATABASE_URL", None)
os.environ["SCHEDULER_ENABLED"] = "false"

import fastapi.dependencies.utils as fastapi_deps_utils
import fastapi.routing as fastapi_routing
import httpx
import pytest
import starlette.concurrency as starlette_concurrency
import starlette.routing as starlette_routing
from sqlalchemy import create_engine


async def _patched_run_in_threadpool(func, *args, **kwargs):
    """Run inline in tests to avoid cross-thread sqlite/session deadlocks."""
    return func(*args, **kwargs)


starlette_concurrency.run_in_threadpool = _patched_run_in_threadpool
starlette_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_deps_utils.run_in_threadpool = _patched_run_in_threadpool


class SyncASGIClient:
    def __init__(self, app):
        self._app = app

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self._app, raise_app_exceptions=False),
            base_url="http://testserver",
            follow_redirects=True,
        ) as client:
            return await client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def patch(self, url: str, **kwargs):
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


# Bind the session factory to a shared in-memory database BEFORE any service imports use it
_test_engine = create_engine(
    "sqlite+pysqlite:///file:fleetconf_test?mode=memory&cache=shared&uri=true",
    connect_args={"check_same_thread": False},
)

import fleetconf.models  # noqa: E402, F401
from fleetconf.db import Base, SessionLocal  # noqa: E402

SessionLocal.configure(bind=_test_engine)

# Keep one connection open so the shared-cache database outlives pooled sessions
_keepalive = _test_engine.connect()
Base.metadata.create_all(_test_engine)


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture(autouse=True)
def _clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture()
def session_factory():
    return SessionLocal


@pytest.fixture()
def db_session(engine):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def fake_clients():
    """device id -> FakeDeviceClient used by the API and scheduler fixtures."""
    return {}


@pytest.fixture()
def client(db_session, fake_clients):
    """Create a test client with database and device dependency overrides."""
    from fleetconf.api.deps import get_client_factory, get_db
    from fleetconf.main import app
    from fleetconf.services.scheduler import DriftScheduler
    from tests.fakes import RecordingTrigger

    def override_get_db():
        return db_session

    def factory(device_id: int):
        if device_id not in fake_clients:
            raise ValueError(f"No client for device {device_id}")
        return fake_clients[device_id]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_client_factory] = lambda: factory

    @asynccontextmanager
    async def _test_lifespan(_app):
        yield

    original_lifespan = app.router.lifespan_context
    app.router.lifespan_context = _test_lifespan
    app.state.scheduler = DriftScheduler(
        session_factory=SessionLocal,
        trigger=RecordingTrigger(),
        client_factory=lambda db: factory,
    )
    try:
        yield SyncASGIClient(app)
    finally:
        app.state.scheduler = None
        app.router.lifespan_context = original_lifespan
        app.dependency_overrides.clear()
