"""
Integration tests for resuming failed runs
"""

import pytest
from sqlalchemy import func, select
from core.exceptions import CannotResumeError, InvalidRunStateError, StepFailedError
from models.base import Base, CheckpointLabel, RunStatus
from models.sync_status import SyncStatus


async def count_rows(engine, table_name: str) -> int:
    table = Base.metadata.tables[table_name]
    async with engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(table))).scalar()


async def fail_at_insertion(make_coordinator, make_source, order_records, flaky_executor, run_key):
    source = make_source(order_records)
    coordinator = make_coordinator("OrdersNew", source)
    flaky_executor.failing = True
    with pytest.raises(StepFailedError):
        await coordinator.run_fresh(run_key=run_key)
    flaky_executor.failing = False
    return coordinator, source


class TestResume:
    """Resume skips completed steps and re-attempts the failed one"""

    @pytest.mark.asyncio
    async def test_resume_after_insertion_failure_does_not_refetch(
        self, make_coordinator, make_source, order_records, flaky_executor, checkpoint_store, test_engine
    ):
        coordinator, source = await fail_at_insertion(
            make_coordinator, make_source, order_records, flaky_executor, "OrdersNew_resume_insert"
        )
        assert await count_rows(test_engine, "Orders_News") == 0
        calls_before = flaky_executor.calls

        result = await coordinator.resume("OrdersNew_resume_insert", CheckpointLabel.INSERTION_FAILED)

        assert result.status == RunStatus.COMPLETED
        assert result.resumed is True
        assert result.run_key == "OrdersNew_resume_insert"
        assert result.total_processed == 25
        # Fetch was not repeated
        assert source.calls == ["Orders_News"]
        assert flaky_executor.calls == calls_before + 3
        assert await count_rows(test_engine, "Orders_News") == 25

        run = await checkpoint_store.load_by_run_key("OrdersNew_resume_insert")
        assert run.status == RunStatus.COMPLETED
        assert run.checkpoint == CheckpointLabel.INSERTION_COMPLETED
        assert run.error_message is None
        assert any(e.startswith("insertion:") for e in run.state.errors)
        assert len(await checkpoint_store.list_runs()) == 1

    @pytest.mark.asyncio
    async def test_resume_without_hint_uses_stored_checkpoint(
        self, make_coordinator, make_source, order_records, flaky_executor, test_engine
    ):
        coordinator, source = await fail_at_insertion(
            make_coordinator, make_source, order_records, flaky_executor, "OrdersNew_no_hint"
        )

        result = await coordinator.resume("OrdersNew_no_hint")

        assert result.status == RunStatus.COMPLETED
        assert source.calls == ["Orders_News"]
        assert await count_rows(test_engine, "Orders_News") == 25

    @pytest.mark.asyncio
    async def test_resume_gets_new_execution_id(
        self, make_coordinator, make_source, order_records, flaky_executor
    ):
        coordinator, _ = await fail_at_insertion(
            make_coordinator, make_source, order_records, flaky_executor, "OrdersNew_exec_id"
        )

        first = await coordinator.resume("OrdersNew_exec_id")
        second = await coordinator.resume("OrdersNew_exec_id")

        assert first.execution_id != second.execution_id
        assert first.run_key == second.run_key == "OrdersNew_exec_id"

    @pytest.mark.asyncio
    async def test_processing_failure_retries_only_processing(
        self, make_coordinator, make_source, flaky_executor, checkpoint_store
    ):
        source = make_source([{"firebase_key": "R1", "products": "corrupt"}])
        coordinator = make_coordinator("RetailerProducts", source)

        with pytest.raises(StepFailedError) as exc_info:
            await coordinator.run_fresh(run_key="RetailerProducts_bad")
        assert exc_info.value.checkpoint == "processing_failed"

        with pytest.raises(StepFailedError):
            await coordinator.resume("RetailerProducts_bad", CheckpointLabel.PROCESSING_FAILED)

        assert source.calls == ["Retailer_Products"]
        assert flaky_executor.calls == 0
        run = await checkpoint_store.load_by_run_key("RetailerProducts_bad")
        assert run.checkpoint == CheckpointLabel.PROCESSING_FAILED
        assert run.state.step1_completed is True
        assert len([e for e in run.state.errors if e.startswith("processing:")]) == 2

    @pytest.mark.asyncio
    async def test_resume_completed_run_repeats_nothing(
        self, make_coordinator, make_source, order_records, flaky_executor
    ):
        source = make_source(order_records)
        coordinator = make_coordinator("OrdersNew", source)
        fresh = await coordinator.run_fresh()
        calls_before = flaky_executor.calls

        result = await coordinator.resume(fresh.run_key, CheckpointLabel.FETCH_FAILED)

        assert result.status == RunStatus.COMPLETED
        assert source.calls == ["Orders_News"]
        assert flaky_executor.calls == calls_before

    @pytest.mark.asyncio
    async def test_resume_after_fetch_failure_refetches(
        self, make_coordinator, make_source, order_records, failing_source, test_engine
    ):
        coordinator = make_coordinator("OrdersNew", failing_source)
        with pytest.raises(StepFailedError):
            await coordinator.run_fresh(run_key="OrdersNew_refetch")

        failing_source.error = None
        failing_source.records = order_records
        result = await coordinator.resume("OrdersNew_refetch", CheckpointLabel.FETCH_FAILED)

        assert result.status == RunStatus.COMPLETED
        assert failing_source.calls == ["Orders_News", "Orders_News"]
        assert await count_rows(test_engine, "Orders_News") == 25


class TestResumeRejected:
    """Resume without usable state"""

    @pytest.mark.asyncio
    async def test_unknown_run_key_has_no_side_effects(
        self, make_coordinator, make_source, status_reporter, test_engine
    ):
        source = make_source([])
        coordinator = make_coordinator("OrdersNew", source)

        with pytest.raises(CannotResumeError) as exc_info:
            await coordinator.resume("OrdersNew_never_ran", CheckpointLabel.INSERTION_FAILED)

        assert exc_info.value.run_key == "OrdersNew_never_ran"
        assert status_reporter.reports == []
        assert source.calls == []
        assert await count_rows(test_engine, SyncStatus.__tablename__) == 0

    @pytest.mark.asyncio
    async def test_other_pipeline_run_rejected(self, make_coordinator, make_source, order_records):
        orders = make_coordinator("OrdersNew", make_source(order_records))
        fresh = await orders.run_fresh()

        retailers = make_coordinator("Retailers", make_source([]))
        with pytest.raises(InvalidRunStateError):
            await retailers.resume(fresh.run_key)
