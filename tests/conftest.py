import os
import tempfile
from collections.abc import Callable
from typing import AsyncGenerator

# Cấu hình môi trường test trước khi import ứng dụng
_TEST_DIR = tempfile.mkdtemp(prefix="flowmind-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/app.db"
os.environ["CREATE_TABLES_ON_START"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["SECRET_KEY"] = "test-jwt-secret"
os.environ["SMTP_HOST"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from faker import Faker  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from flowmind.ai.providers.dispatcher import (  # noqa: E402
    ProviderDispatcher,
    get_provider_dispatcher,
)
from flowmind.core.db.database import Base, async_get_db  # noqa: E402
from flowmind.core.enums import UserRole  # noqa: E402
from flowmind.core.security import create_access_token, get_password_hash  # noqa: E402
from flowmind.core.vault import CredentialVault  # noqa: E402
from flowmind.main import app  # noqa: E402
from flowmind.models.user import User  # noqa: E402
from flowmind.services.email_service import get_email_sender  # noqa: E402
from flowmind.services.provider_registry import (  # noqa: E402
    ProviderRegistry,
    get_provider_registry,
)

from tests.helpers.test_utils import openai_reply  # noqa: E402

fake = Faker()

TEST_PASSWORD = "testpassword123"


class FakeEmailSender:
    """Email sender giả lập, ghi lại các token đã gửi."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[tuple[str, str]] = []

    async def send_reset_email(self, address: str, token: str) -> bool:
        if not self.succeed:
            return False
        self.sent.append((address, token))
        return True


class FakeUpstream:
    """Upstream LLM giả lập qua httpx.MockTransport.

    ``handler`` có thể thay trong từng test; mọi request được lưu vào ``requests``.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, json=openai_reply())
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Create a fresh SQLite database for each test function."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault("unit-test-vault-secret")


@pytest.fixture
def registry(vault) -> ProviderRegistry:
    return ProviderRegistry(vault=vault)


@pytest.fixture
def email_sender() -> FakeEmailSender:
    return FakeEmailSender()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest_asyncio.fixture
async def async_client(
    session_factory, registry, email_sender, upstream
) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    upstream_client = upstream.client()

    app.dependency_overrides[async_get_db] = override_get_db
    app.dependency_overrides[get_provider_registry] = lambda: registry
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_provider_dispatcher] = lambda: ProviderDispatcher(
        timeout=5.0, client=upstream_client
    )

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    await upstream_client.aclose()


async def _create_user(session: AsyncSession, role: UserRole) -> User:
    user = User(
        username=f"{role.value}_{fake.random_int(1000, 9999)}",
        email=fake.email().lower(),
        hashed_password=get_password_hash(TEST_PASSWORD),
        role=role.value,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user(async_session: AsyncSession) -> User:
    """Create a test user."""
    return await _create_user(async_session, UserRole.user)


@pytest_asyncio.fixture
async def test_admin(async_session: AsyncSession) -> User:
    """Create a test admin."""
    return await _create_user(async_session, UserRole.admin)


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Get authentication headers for a test user."""
    token = create_access_token(data={"sub": test_user.username})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(test_admin: User) -> dict:
    """Get authentication headers for a test admin."""
    token = create_access_token(data={"sub": test_admin.username})
    return {"Authorization": f"Bearer {token}"}
