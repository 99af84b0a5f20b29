"""
Pytest configuration and fixtures
"""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from typing import Any, Dict, List, Optional
from core.exceptions import SourceFetchError
from ingestion.base import RecordSource
from ingestion.checkpoint_store import SQLAlchemyCheckpointStore
from ingestion.fetch_cache import FetchCacheStore
from ingestion.loaders.bulk_writer import ChunkedBulkWriter, EngineExecutor
from ingestion.pipelines import get_pipeline
from ingestion.runner import PipelineCoordinator
from models.base import Base
# Register every table on Base.metadata
from models.sync_status import SyncStatus  # noqa: F401
from models.fetch_cache import FetchCache  # noqa: F401
import models.targets  # noqa: F401


class FakeRecordSource(RecordSource):
    """In-memory record source that counts fetches"""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self.records = records or []
        self.error = error
        self.calls: List[str] = []

    async def fetch(self, path: str) -> List[Dict[str, Any]]:
        self.calls.append(path)
        if self.error is not None:
            raise self.error
        return [dict(r) for r in self.records]


class RecordingStatusReporter:
    """Collects status pushes instead of sending them"""

    def __init__(self):
        self.reports: List[Dict[str, Any]] = []

    async def report(self, table_name, status, unique_key, error_message=None) -> bool:
        self.reports.append({
            "table_name": table_name,
            "status": status,
            "unique_key": unique_key,
            "error_message": error_message,
        })
        return True

    @property
    def statuses(self) -> List[str]:
        return [r["status"] for r in self.reports]


class FlakyExecutor(EngineExecutor):
    """Engine executor that fails while `failing` is set, or on selected call numbers"""

    def __init__(self, engine, failing: bool = False):
        super().__init__(engine)
        self.failing = failing
        self.fail_on_calls = set()
        self.calls = 0

    async def execute(self, statement) -> int:
        self.calls += 1
        if self.failing or self.calls in self.fail_on_calls:
            raise ConnectionError("Lock wait timeout exceeded")
        return await super().execute(statement)


async def no_sleep(delay: float):
    return None


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite test database in a temporary file"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync_test.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
def checkpoint_store(test_engine, session_factory):
    return SQLAlchemyCheckpointStore(test_engine, session_factory)


@pytest.fixture
def fetch_cache(session_factory):
    return FetchCacheStore(session_factory)


@pytest.fixture
def status_reporter():
    return RecordingStatusReporter()


@pytest.fixture
def flaky_executor(test_engine):
    return FlakyExecutor(test_engine)


@pytest.fixture
def order_records():
    """Orders as returned by the document store"""
    return [
        {
            "firebase_key": f"ORD{i:04d}",
            "order_id": f"ORD{i:04d}",
            "customer_id": f"C{i % 7}",
            "retailer_id": f"R{i % 5}",
            "order_date": "2024-01-15 10:00:00",
            "total_amount": str(100 + i),
            "status": "Delivered",
        }
        for i in range(1, 26)
    ]


@pytest.fixture
def make_coordinator(checkpoint_store, fetch_cache, flaky_executor, status_reporter):
    """Build a coordinator over the SQLite stores for a pipeline and source"""

    def factory(pipeline_name: str, source: RecordSource, chunk_size: int = 10, max_retries: int = 3):
        pipeline = get_pipeline(pipeline_name)
        writer = ChunkedBulkWriter(
            flaky_executor,
            pipeline.mapping,
            chunk_size=chunk_size,
            max_retries=max_retries,
            sleep=no_sleep
        )
        return PipelineCoordinator(
            pipeline=pipeline,
            source=source,
            checkpoint_store=checkpoint_store,
            fetch_cache=fetch_cache,
            writer=writer,
            status_reporter=status_reporter,
            step_timeout=30.0
        )

    return factory


@pytest.fixture
def failing_source():
    return FakeRecordSource(error=SourceFetchError("Firebase returned 503 for Orders_News"))


@pytest.fixture
def make_source():
    """Build an in-memory record source"""

    def factory(records=None, error=None) -> FakeRecordSource:
        return FakeRecordSource(records=records, error=error)

    return factory
