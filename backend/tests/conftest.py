import asyncio
import os
import tempfile

# Settings are read at import time, so the environment must be in place
# before anything under stockservice is imported.
_fd, _DB_PATH = tempfile.mkstemp(suffix=".db")
os.close(_fd)
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["REDIS_URL"] = "redis://localhost:6399/15"
os.environ["CONSUMER_NAME"] = "pytest"
os.environ["LOG_LEVEL"] = "DEBUG"

import pytest  # noqa: E402

from stockservice.core.metrics import metrics  # noqa: E402


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    metrics.set_redis(None)
    yield
    metrics.reset()
    metrics.set_redis(None)


@pytest.fixture
def db():
    """Fresh SQLite schema for each test."""
    from stockservice.core.database import Base, engine
    import stockservice.models  # noqa: F401

    async def _reset():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(_reset())
    yield engine


@pytest.fixture
def catalog():
    from tests.fakes import FakeCatalog

    return FakeCatalog()


@pytest.fixture
def streams():
    from tests.fakes import FakeStreams

    return FakeStreams()
