import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./studyhall-test.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from studyhall.auth import create_access_token
from studyhall.database import get_db
from studyhall.models import Base
from studyhall.rate_limit import MemoryRateLimitStore
from studyhall.repositories.user_repository import UserRepository
from studyhall.schemas.user import UserCreate
from studyhall.services.friend_service import FriendService
from studyhall.websocket_manager import ConnectionManager

PASSWORD = "password123"


class FakeWebSocket:
    """Records outbound frames in place of a real socket."""

    def __init__(self, app=None, fail=False):
        self.app = app
        self.fail = fail
        self.incoming = []
        self.accepted = False
        self.closed_code = None
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def receive(self):
        return self.incoming.pop(0)

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    async def close(self, code=1000, reason=None):
        self.closed_code = code

    def events(self, event_type=None):
        return [frame for frame in self.sent if event_type is None or frame["type"] == event_type]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'studyhall.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def manager():
    return ConnectionManager()


@pytest.fixture
def rate_limit_store():
    return MemoryRateLimitStore()


@pytest_asyncio.fixture
async def app(session_factory, manager, rate_limit_store):
    from studyhall.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.connection_manager = manager
    app.state.rate_limit_store = rate_limit_store
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def make_user(session_factory):
    async def _make_user(username):
        async with session_factory() as session:
            return await UserRepository(session).create(
                UserCreate(email=f"{username}@example.com", username=username, password=PASSWORD)
            )
    return _make_user


@pytest.fixture
def befriend(session_factory):
    async def _befriend(user, other):
        async with session_factory() as session:
            service = FriendService(session)
            result = await service.send_request(user.id, other.id)
            return await service.accept_request(result.request.id, other.id)
    return _befriend


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}
