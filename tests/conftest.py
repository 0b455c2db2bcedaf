"""
tests/conftest.py - test harness bootstrap.
Everything runs against the in-memory permission storage; no MongoDB needed.
"""
import os

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("PERMISSIONS_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections.abc import AsyncGenerator, Generator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from parks_access.api.deps import create_access_token  # noqa: E402
from parks_access.main import create_app  # noqa: E402
from parks_access.services.storage import MemoryPermissionStorage  # noqa: E402
from parks_access.services.store import MatrixStore  # noqa: E402


@pytest.fixture
def storage() -> MemoryPermissionStorage:
    return MemoryPermissionStorage()


@pytest_asyncio.fixture
async def store(storage: MemoryPermissionStorage) -> AsyncGenerator[MatrixStore, None]:
    matrix_store = MatrixStore(storage, protected_roles=["super_admin"])
    await matrix_store.init()
    yield matrix_store
    await matrix_store.shutdown()


@pytest.fixture
def app(storage: MemoryPermissionStorage):
    return create_app(storage=storage)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """Build a bearer header for a caller holding *role*."""

    def _headers(role: str, subject: str = "user-1") -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(subject, role)}"}

    return _headers
