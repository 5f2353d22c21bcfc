import asyncio
import sqlite3

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from marketplace import schema
from marketplace.config import Settings
from marketplace.hub import NotificationHub
from marketplace.identity import Actor
from marketplace.main import create_app

SELLER = Actor(id=1, email="seller@store.test", role="seller")
BUYER = Actor(id=2, email="buyer@store.test", role="buyer")


class FakeRedis:
    """Just enough of redis.asyncio.Redis for sessions and the event mirror."""

    def __init__(self, fail_publish: bool = False, stall_publish: bool = False):
        self.data: dict[str, str] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_publish = fail_publish
        self.stall_publish = stall_publish

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        return True

    async def delete(self, *keys):
        return sum(1 for k in keys if self.data.pop(k, None) is not None)

    async def publish(self, channel, message):
        if self.fail_publish:
            raise RedisConnectionError("redis down")
        if self.stall_publish:
            await asyncio.sleep(3600)
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        pass


class FailingCommitSession(AsyncSession):
    async def commit(self):
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


class SlowSession(AsyncSession):
    async def execute(self, *args, **kwargs):
        await asyncio.sleep(1)
        return await super().execute(*args, **kwargs)


class RecordingConnection:
    def __init__(self):
        self.frames: list[dict] = []

    async def send_json(self, data: dict) -> None:
        self.frames.append(data)


class BrokenConnection:
    async def send_json(self, data: dict) -> None:
        raise RuntimeError("socket closed")


class StalledConnection:
    """A client that stopped reading: sends never complete."""

    async def send_json(self, data: dict) -> None:
        await asyncio.sleep(3600)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "market.db"


@pytest_asyncio.fixture
async def engine(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    await schema.init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def fake_redis():
    return FakeRedis()


def make_client(db_path, fake_redis, **overrides) -> TestClient:
    settings = Settings(database_url=f"sqlite+aiosqlite:///{db_path}", **overrides)
    return TestClient(create_app(settings, redis=fake_redis))


@pytest.fixture
def client(db_path, fake_redis):
    with make_client(db_path, fake_redis) as client:
        yield client


def login(client: TestClient, email: str, password: str) -> dict:
    resp = client.post("/api/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def promote_to_seller(db_path, email: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("UPDATE users SET role = 'seller' WHERE email = ?", (email,))
