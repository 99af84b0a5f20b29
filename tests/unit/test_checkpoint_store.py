"""
Unit tests for checkpoint persistence and the fetch cache
"""

import asyncio
import pytest
from typing import List, Optional
from unittest.mock import MagicMock
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from core.exceptions import InvalidRunStateError, PersistenceError
from ingestion.checkpoint_store import CheckpointStore, SQLAlchemyCheckpointStore
from ingestion.fetch_cache import FetchCacheStore
from models.base import CheckpointLabel, PipelineStep, RunStatus
from models.sync_status import SyncStatus
from schemas.run import FetchResult, RunRecord, RunState


async def hang(*args, **kwargs):
    await asyncio.sleep(5)


def make_run(run_key: str = "RetailerProducts_2024-01-15_10:00:00_ab12cd34", **kwargs) -> RunRecord:
    return RunRecord(run_key=run_key, pipeline_name="RetailerProducts", **kwargs)


class TestCheckpointStore:
    """Sync_Status persistence"""

    @pytest.mark.asyncio
    async def test_save_and_load_round_trip(self, checkpoint_store):
        run = make_run(status=RunStatus.RUNNING)
        run.state.fetch_result = FetchResult(data_key="retailer_products_fetch_1", total_records=3)
        run.state.mark_completed(PipelineStep.FETCH)
        run.checkpoint = CheckpointLabel.FETCH_COMPLETED

        await checkpoint_store.save(run)
        loaded = await checkpoint_store.load_by_run_key(run.run_key)

        assert loaded is not None
        assert loaded.status == RunStatus.RUNNING
        assert loaded.checkpoint == CheckpointLabel.FETCH_COMPLETED
        assert loaded.state.step1_completed is True
        assert loaded.state.step2_completed is False
        assert loaded.state.fetch_result.data_key == "retailer_products_fetch_1"
        assert loaded.updated_at is not None

    @pytest.mark.asyncio
    async def test_last_write_wins(self, checkpoint_store, session_factory):
        run = make_run(status=RunStatus.RUNNING)
        await checkpoint_store.save(run)

        run.status = RunStatus.FAILED
        run.checkpoint = CheckpointLabel.FETCH_FAILED
        run.error_message = "Firebase returned 503"
        await checkpoint_store.save(run)

        loaded = await checkpoint_store.load_by_run_key(run.run_key)
        assert loaded.status == RunStatus.FAILED
        assert loaded.checkpoint == CheckpointLabel.FETCH_FAILED
        assert loaded.error_message == "Firebase returned 503"

        runs = await checkpoint_store.list_runs()
        assert len(runs) == 1

    @pytest.mark.asyncio
    async def test_workflow_state_uses_camel_case_keys(self, checkpoint_store, session_factory):
        run = make_run()
        run.state.fetch_result = FetchResult(data_key="k", total_records=1)
        await checkpoint_store.save(run)

        async with session_factory() as session:
            row = (await session.execute(
                SyncStatus.__table__.select().where(SyncStatus.unique_key == run.run_key)
            )).one()

        assert '"step1Completed"' in row.workflow_state
        assert '"fetchResult"' in row.workflow_state
        assert '"dataKey"' in row.workflow_state

    @pytest.mark.asyncio
    async def test_unknown_key_returns_none(self, checkpoint_store):
        assert await checkpoint_store.load_by_run_key("missing") is None

    @pytest.mark.asyncio
    async def test_malformed_state_rejected(self, checkpoint_store, test_engine):
        run = make_run()
        await checkpoint_store.save(run)

        async with test_engine.begin() as conn:
            await conn.execute(
                update(SyncStatus).where(SyncStatus.unique_key == run.run_key).values(workflow_state="{not json")
            )

        with pytest.raises(InvalidRunStateError):
            await checkpoint_store.load_by_run_key(run.run_key)

    @pytest.mark.asyncio
    async def test_list_runs_filters_by_pipeline(self, checkpoint_store):
        await checkpoint_store.save(make_run("RetailerProducts_a"))
        await checkpoint_store.save(make_run("RetailerProducts_b"))
        await checkpoint_store.save(RunRecord(run_key="Retailers_a", pipeline_name="Retailers"))

        runs = await checkpoint_store.list_runs(pipeline_name="RetailerProducts")

        assert {r.run_key for r in runs} == {"RetailerProducts_a", "RetailerProducts_b"}

    @pytest.mark.asyncio
    async def test_storage_failure_raises_persistence_error(self, session_factory):
        class BrokenBegin:
            async def __aenter__(self):
                raise OperationalError("INSERT", {}, Exception("database is locked"))

            async def __aexit__(self, *args):
                return False

        engine = MagicMock()
        engine.dialect.name = "sqlite"
        engine.begin.return_value = BrokenBegin()
        store = SQLAlchemyCheckpointStore(engine, session_factory)

        with pytest.raises(PersistenceError):
            await store.save(make_run())

    @pytest.mark.asyncio
    async def test_unsupported_dialect_raises_persistence_error(self, session_factory):
        engine = MagicMock()
        engine.dialect.name = "oracle"
        store = SQLAlchemyCheckpointStore(engine, session_factory)

        with pytest.raises(PersistenceError):
            await store.save(make_run())

    @pytest.mark.asyncio
    async def test_list_runs_skips_malformed_rows(self, checkpoint_store, test_engine):
        await checkpoint_store.save(make_run("RetailerProducts_good"))
        await checkpoint_store.save(make_run("RetailerProducts_bad"))

        async with test_engine.begin() as conn:
            await conn.execute(
                update(SyncStatus)
                .where(SyncStatus.unique_key == "RetailerProducts_bad")
                .values(workflow_state="{not json")
            )

        runs = await checkpoint_store.list_runs()

        assert [r.run_key for r in runs] == ["RetailerProducts_good"]

    @pytest.mark.asyncio
    async def test_hanging_save_times_out(self, test_engine, session_factory, monkeypatch):
        store = SQLAlchemyCheckpointStore(test_engine, session_factory, call_timeout=0.05)
        monkeypatch.setattr(store, "_execute_upsert", hang)

        with pytest.raises(PersistenceError) as exc_info:
            await store.save(make_run())

        assert exc_info.value.context["timeout"] == 0.05

    @pytest.mark.asyncio
    async def test_hanging_load_times_out(self, test_engine, session_factory, monkeypatch):
        store = SQLAlchemyCheckpointStore(test_engine, session_factory, call_timeout=0.05)
        monkeypatch.setattr(store, "_select_rows", hang)

        with pytest.raises(PersistenceError):
            await store.load_by_run_key("RetailerProducts_a")
        with pytest.raises(PersistenceError):
            await store.list_runs()

    def test_store_without_list_runs_cannot_be_built(self):
        class PartialStore(CheckpointStore):
            async def save(self, run: RunRecord) -> int:
                return 1

            async def load_by_run_key(self, run_key: str) -> Optional[RunRecord]:
                return None

        with pytest.raises(TypeError):
            PartialStore()

    def test_complete_store_can_be_built(self):
        class MemoryStore(CheckpointStore):
            async def save(self, run: RunRecord) -> int:
                return 1

            async def load_by_run_key(self, run_key: str) -> Optional[RunRecord]:
                return None

            async def list_runs(self, pipeline_name: Optional[str] = None, limit: int = 20) -> List[RunRecord]:
                return []

        assert isinstance(MemoryStore(), CheckpointStore)


class TestFetchCache:
    """Record sets carried between steps"""

    @pytest.mark.asyncio
    async def test_save_and_load(self, fetch_cache):
        records = [{"order_id": "ORD1", "total_amount": 10.5}, {"order_id": "ORD2"}]

        data_key = await fetch_cache.save("Orders_News", "fetch", records)

        assert data_key.startswith("orders_news_fetch_")
        assert await fetch_cache.load(data_key) == records

    @pytest.mark.asyncio
    async def test_data_keys_are_unique(self, fetch_cache):
        first = await fetch_cache.save("Orders_News", "fetch", [])
        second = await fetch_cache.save("Orders_News", "fetch", [])
        assert first != second

    @pytest.mark.asyncio
    async def test_missing_key_is_invalid_state(self, fetch_cache):
        with pytest.raises(InvalidRunStateError):
            await fetch_cache.load("orders_news_fetch_missing")

    @pytest.mark.asyncio
    async def test_hanging_save_times_out(self, session_factory, monkeypatch):
        cache = FetchCacheStore(session_factory, call_timeout=0.05)
        monkeypatch.setattr(cache, "_insert", hang)

        with pytest.raises(PersistenceError):
            await cache.save("Orders_News", "fetch", [{"order_id": "ORD1"}])

    @pytest.mark.asyncio
    async def test_hanging_load_times_out(self, session_factory, monkeypatch):
        cache = FetchCacheStore(session_factory, call_timeout=0.05)
        monkeypatch.setattr(cache, "_select_payload", hang)

        with pytest.raises(PersistenceError):
            await cache.load("orders_news_fetch_1")


class TestRunState:
    """Step flag ordering"""

    def test_mark_completed_requires_predecessors(self):
        state = RunState()
        with pytest.raises(InvalidRunStateError):
            state.mark_completed(PipelineStep.PROCESSING)

    def test_mark_completed_sets_checkpoint(self):
        state = RunState(fetch_result=FetchResult(data_key="k"))
        state.mark_completed(PipelineStep.FETCH)

        assert state.step1_completed is True
        assert state.last_checkpoint == CheckpointLabel.FETCH_COMPLETED

    def test_out_of_order_flags_rejected(self):
        state = RunState.from_json('{"step1Completed": false, "step2Completed": true}')
        with pytest.raises(InvalidRunStateError):
            state.check_step_order()

    def test_completed_fetch_needs_fetch_result(self):
        state = RunState.from_json('{"step1Completed": true}')
        with pytest.raises(InvalidRunStateError):
            state.check_step_order()

    def test_json_round_trip_drops_chunk_outcomes(self):
        state = RunState.from_json(
            '{"step1Completed": true, "fetchResult": {"dataKey": "k", "totalRecords": 2}, '
            '"errors": "fetch: boom", "lastCheckpoint": "fetch_completed"}'
        )

        assert state.errors == ["fetch: boom"]
        assert state.last_checkpoint == CheckpointLabel.FETCH_COMPLETED
        assert RunState.from_json(state.to_json()) == state

    def test_checkpoint_label_step(self):
        assert CheckpointLabel.INSERTION_FAILED.step == PipelineStep.INSERTION
        assert CheckpointLabel.INSERTION_FAILED.is_failure is True
        assert PipelineStep.PROCESSING.failed_label == CheckpointLabel.PROCESSING_FAILED
