from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event

from promptops.core.auth import get_current_user
from promptops.core.database import create_engine, create_session_factory, get_db, init_db
from promptops.main import create_app
from promptops.schemas.auth import TokenData
from promptops.services.entitlement_service import EntitlementService
from promptops.services.model_registry import ModelRegistry

SIGNUP = datetime(2026, 1, 10, 12, 0, 0)
USER_ID = "user-123"
ADMIN_ID = "admin-1"


class FrozenClock:
    """Mutable clock injected into the entitlement service"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'promptops.db'}", connect_args={"timeout": 30})
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def locking_engine(tmp_path):
    """SQLite engine that takes the write lock at BEGIN, for concurrent writer tests"""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'concurrent.db'}", connect_args={"timeout": 30})

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(SIGNUP)


@pytest.fixture
def service(clock):
    return EntitlementService(clock=clock)


@pytest_asyncio.fixture
async def seeded_models(db):
    await ModelRegistry().seed_defaults(db)


@pytest_asyncio.fixture
async def provisioned(db, service, seeded_models):
    """A free-plan user who signed up at SIGNUP"""
    return await service.provision_user(db, USER_ID, signup_at=SIGNUP)


@pytest.fixture
def current_user():
    return TokenData(user_id=USER_ID, email="user@example.com")


@pytest.fixture
def app(service, session_factory, current_user):
    app = create_app(service=service, seed_models=False)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: current_user
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
