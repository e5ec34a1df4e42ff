import os

# Must be set before the app modules build their engine from settings.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")

from typing import AsyncGenerator, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from core.auth import IdentityProvider, get_identity_provider  # noqa: E402
from db.record_store import get_record_store  # noqa: E402
from main import app  # noqa: E402
from tests.fakes import FakeRecordStore  # noqa: E402

USER_ID = "6f1c2a8e-3b4d-4e5f-8a9b-0c1d2e3f4a5b"


class StaticIdentityProvider(IdentityProvider):
    def __init__(self, user_id: Optional[str]):
        self.user_id = user_id

    async def authenticate(self) -> Optional[str]:
        return self.user_id


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(USER_ID)


@pytest.fixture
def category(store: FakeRecordStore) -> dict:
    return store.add_category("電子機器")


@pytest_asyncio.fixture
async def client(store: FakeRecordStore, identity: StaticIdentityProvider) -> AsyncGenerator[AsyncClient, None]:
    """API client with the record store and the caller's identity swapped for fakes."""
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_identity_provider] = lambda: identity
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client(store: FakeRecordStore) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_identity_provider] = lambda: StaticIdentityProvider(None)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
