import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from accesslog.config import Settings
from accesslog.core.cache import CacheClient
from accesslog.deps.db import get_db
from accesslog.deps.redis import get_redis
from accesslog.main import create_app
from accesslog.models.base import Base

# Import models so metadata has both tables
from accesslog.models.application import Application  # noqa: F401
from accesslog.models.tracking import TrackingEvent  # noqa: F401

UA_CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def make_settings(**overrides) -> Settings:
    values = {
        "database": {"url": "sqlite+aiosqlite://"},
        "redis": {"url": "redis://localhost:6379/15"},
        "rate_limit": {"requests_per_minute": 1000, "requests_per_hour": 10000},
        "logging": {"level": "DEBUG"},
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
async def redis(redis_server):
    r = fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield r
    await r.aclose()


@pytest.fixture
def cache(redis) -> CacheClient:
    return CacheClient(redis)


@pytest.fixture
def broken_cache(redis_server) -> CacheClient:
    # every command fails with a redis ConnectionError
    redis_server.connected = False
    return CacheClient(fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True))


def build_app(settings: Settings, session_factory, redis):
    app = create_app(settings)

    async def override_get_db():
        async with session_factory() as s:
            yield s

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    return app


@pytest.fixture
def app(settings, session_factory, redis):
    return build_app(settings, session_factory, redis)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def tenant(client: AsyncClient):
    r = await client.post("/v1/applications", json={"name": "Demo", "domain": "demo.example.com"})
    assert r.status_code == 201, r.text
    data = r.json()["data"]
    return {"app_id": data["app_id"], "api_key": data["api_key"]}
