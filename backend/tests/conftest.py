from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

# Environment must be in place before reimburseme.core.config is imported
_TEST_DB_DIR = tempfile.mkdtemp(prefix="reimburseme-tests-")
TEST_DB_PATH = os.path.join(_TEST_DB_DIR, "test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
os.environ["DRAMATIQ_BROKER_URL"] = "stub://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DEV_AUTH_BYPASS"] = "false"
os.environ.pop("SENTRY_DSN", None)

# Add backend folder to sys.path so `import reimburseme...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from reimburseme.core.database import Base, SessionLocal, sync_engine  # noqa: E402
from reimburseme.models import tables  # noqa: E402,F401

from factories import FakeAsyncRedis, RecordingQueue, create_user  # noqa: E402


def _test_async_engine():
    # NullPool: TestClient and pytest-asyncio run on different event loops
    return create_async_engine(f"sqlite+aiosqlite:///{TEST_DB_PATH}", poolclass=NullPool)


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(sync_engine)
    Base.metadata.create_all(sync_engine)
    yield


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest_asyncio.fixture
async def async_session_factory():
    engine = _test_async_engine()
    yield async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def user():
    return create_user()


@pytest.fixture
def fake_queue():
    return RecordingQueue()


@pytest.fixture
def fake_redis():
    return FakeAsyncRedis()


@pytest.fixture
def app():
    from reimburseme.api.main import app as fastapi_app

    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app, user, fake_queue, fake_redis):
    from fastapi.testclient import TestClient

    from reimburseme.api import dependencies

    TestSession = async_sessionmaker(_test_async_engine(), expire_on_commit=False, autoflush=False)

    async def _db():
        async with TestSession() as session:
            yield session

    async def _redis():
        return fake_redis

    app.dependency_overrides[dependencies.get_db_session] = _db
    app.dependency_overrides[dependencies.get_current_user] = lambda: user
    app.dependency_overrides[dependencies.get_task_queue] = lambda: fake_queue
    app.dependency_overrides[dependencies.get_redis_client] = _redis
    # No context manager: lifespan (Sentry init, create_all) is not needed here
    return TestClient(app)
