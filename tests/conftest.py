import fakeredis
import pytest
import pytest_asyncio
from beanie import init_beanie
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from cache import get_redis_db
from database import DOCUMENT_MODELS
from main import app
from models import Url

# Use a test database name
TEST_MONGO_DB = "test_urlshortener"


# Override environment variables for testing
@pytest.fixture(autouse=True)
def set_test_env_vars(monkeypatch):
    monkeypatch.setenv("MONGO_DB", TEST_MONGO_DB)
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DEFAULT_DOMAIN", "sho.rt")
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("RATE_LIMIT_MAX_REQUESTS", "1000")
    monkeypatch.delenv("SHORT_CODE_STRATEGY", raising=False)
    monkeypatch.delenv("SHORT_CODE_LENGTH", raising=False)


# In-memory MongoDB, fresh per test
@pytest_asyncio.fixture(scope="function")
async def mongo_test_client():
    client = AsyncMongoMockClient()
    database = client[TEST_MONGO_DB]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    yield database
    await client.drop_database(TEST_MONGO_DB)


@pytest.fixture(scope="function")
def redis_test_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()  # 在每個測試前清空測試資料庫
    yield client
    client.flushall()
    client.close()


# Override the get_redis_db dependency (autouse to apply to all tests)
@pytest.fixture(autouse=True)
def override_get_redis_db(redis_test_client):
    def _override_get_redis_db():
        yield redis_test_client

    app.dependency_overrides[get_redis_db] = _override_get_redis_db
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def client(mongo_test_client):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_url(mongo_test_client):
    """Factory inserting a Url straight into the store."""

    async def _make_url(short_code: str, original_url: str = "https://example.com", **fields):
        url = Url(original_url=original_url, short_code=short_code, **fields)
        await url.insert()
        return url

    return _make_url


async def _register(client: AsyncClient, username: str, email: str, password: str = "secret123"):
    response = await client.post(
        "/api/auth/register",
        json={"username": username, "email": email, "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest_asyncio.fixture
async def registered_user(client):
    return await _register(client, "alice", "alice@example.com")


@pytest.fixture
def auth_headers(registered_user):
    return {"Authorization": f"Bearer {registered_user['token']}"}


@pytest_asyncio.fixture
async def other_auth_headers(client):
    data = await _register(client, "bob", "bob@example.com")
    return {"Authorization": f"Bearer {data['token']}"}
