# ============================================================================
# File: ingestion/runner.py
# Description: Checkpointed sync orchestrator (fetch -> processing -> insertion)
# ============================================================================
"""
Pipeline Coordinator - drives one sync run through its ordered steps.

This module provides resumable orchestration with:
- Explicit checkpoint persistence after every step transition
- Resume from the last safe point without repeating completed steps
- Partial failure support (abandoned chunks reported, not fatal)
- Per-step timeouts and cancellation that leave an accurate failed checkpoint
- Best-effort status pushes at every boundary
- Best-effort post-sync calls once the rows are written
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional
import asyncio
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from core.exceptions import (
    CannotResumeError,
    InvalidRunStateError,
    LoadError,
    StepFailedError,
    StepTimeoutError,
)
from ingestion.base import RecordSource
from ingestion.checkpoint_store import CheckpointStore, SQLAlchemyCheckpointStore
from ingestion.extractors.firebase_extractor import FirebaseRecordSource
from ingestion.fetch_cache import FetchCacheStore
from ingestion.loaders.bulk_writer import ChunkedBulkWriter, EngineExecutor
from ingestion.pipelines import PipelineDefinition, get_pipeline
from ingestion.post_sync import PostSyncCaller
from ingestion.status_reporter import StatusReporter
from ingestion.transformers.normalizer import RecordNormalizer
from models.base import CheckpointLabel, PipelineStep, RunStatus, STEP_ORDER
from schemas.run import FetchResult, ProcessResult, RunRecord, RunResult, RunState

logger = logging.getLogger(__name__)


class PipelineCoordinator:
    """
    Checkpointed Sync Orchestrator

    Responsibilities:
    - Run fetch -> processing -> insertion strictly in order
    - Persist checkpoint + run state after every step transition
    - Skip completed steps on resume, re-attempt the failed one
    - Decide Completed / PartiallyFailed / Failed
    - Push run status to the monitoring endpoint
    """

    def __init__(
        self,
        pipeline: PipelineDefinition,
        source: RecordSource,
        checkpoint_store: CheckpointStore,
        fetch_cache: FetchCacheStore,
        writer: ChunkedBulkWriter,
        status_reporter: Optional[StatusReporter] = None,
        step_timeout: Optional[float] = 1800.0,
        chunk_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        post_sync_caller: Optional[PostSyncCaller] = None
    ):
        self.pipeline = pipeline
        self.source = source
        self.checkpoint_store = checkpoint_store
        self.fetch_cache = fetch_cache
        self.writer = writer
        self.status_reporter = status_reporter
        self.step_timeout = step_timeout
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.post_sync_caller = post_sync_caller

        self._steps: Dict[PipelineStep, Callable[[RunRecord], Awaitable[None]]] = {
            PipelineStep.FETCH: self._fetch,
            PipelineStep.PROCESSING: self._process,
            PipelineStep.INSERTION: self._insert,
        }

    @staticmethod
    def new_run_key(pipeline_name: str, now: Optional[datetime] = None) -> str:
        """Human readable, time derived run key: <Pipeline>_<YYYY-MM-DD_HH:MM:SS>_<8 hex>"""
        now = now or datetime.now(timezone.utc)
        return f"{pipeline_name}_{now:%Y-%m-%d_%H:%M:%S}_{uuid.uuid4().hex[:8]}"

    @staticmethod
    def new_execution_id() -> str:
        return uuid.uuid4().hex

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_fresh(
        self,
        source_path: Optional[str] = None,
        run_key: Optional[str] = None,
        execution_id: Optional[str] = None
    ) -> RunResult:
        """
        Start a new run and execute every step.

        Args:
            source_path: Document store path (defaults to the pipeline's path)
            run_key: Pre-allocated run key (generated when omitted)
            execution_id: Pre-allocated execution id (generated when omitted)

        Returns:
            RunResult with write totals and terminal status

        Raises:
            StepFailedError: A step failed; the run is persisted as Failed
            PersistenceError: The checkpoint store is unreachable
        """
        run = RunRecord(
            run_key=run_key or self.new_run_key(self.pipeline.name),
            pipeline_name=self.pipeline.name,
            status=RunStatus.INITIALIZING,
            state=RunState(
                source_path=source_path or self.pipeline.source_path,
                started_at=datetime.now(timezone.utc)
            )
        )
        execution_id = execution_id or self.new_execution_id()

        logger.info(
            f"Starting {self.pipeline.name} run {run.run_key} "
            f"(execution {execution_id}, path {run.state.source_path})"
        )
        await self.checkpoint_store.save(run)
        await self._report(run)

        return await self._execute(run, execution_id, checkpoint_hint=None, resumed=False)

    async def resume(
        self,
        run_key: str,
        checkpoint_hint: Optional[CheckpointLabel] = None,
        execution_id: Optional[str] = None
    ) -> RunResult:
        """
        Resume a persisted run from its last safe point.

        Completed steps are skipped. The step named by the failure hint (or,
        without a hint, by the stored checkpoint) is re-attempted.

        Raises:
            CannotResumeError: No state is persisted for run_key (nothing is written)
            InvalidRunStateError: The persisted state is malformed
            StepFailedError: A re-attempted step failed again
        """
        run = await self.checkpoint_store.load_by_run_key(run_key)
        if run is None:
            raise CannotResumeError(run_key, context={"pipeline_name": self.pipeline.name})

        if run.pipeline_name != self.pipeline.name:
            raise InvalidRunStateError(
                f"Run {run_key} belongs to pipeline {run.pipeline_name}",
                context={"run_key": run_key, "expected": self.pipeline.name}
            )
        run.state.check_step_order()

        hint = checkpoint_hint or run.checkpoint
        execution_id = execution_id or self.new_execution_id()
        logger.info(
            f"Resuming {self.pipeline.name} run {run_key} as execution {execution_id} "
            f"(checkpoint={run.checkpoint.value if run.checkpoint else None}, "
            f"hint={hint.value if hint else None})"
        )

        return await self._execute(run, execution_id, checkpoint_hint=hint, resumed=True)

    async def get_run(self, run_key: str) -> Optional[RunRecord]:
        return await self.checkpoint_store.load_by_run_key(run_key)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _execute(
        self,
        run: RunRecord,
        execution_id: str,
        checkpoint_hint: Optional[CheckpointLabel],
        resumed: bool
    ) -> RunResult:
        run.status = RunStatus.RUNNING
        run.error_message = None
        await self.checkpoint_store.save(run)
        await self._report(run)

        for step in STEP_ORDER:
            if run.state.is_completed(step):
                logger.info(f"[{run.run_key}] Step {step.value} already completed, skipping")
                if checkpoint_hint == step.failed_label:
                    logger.warning(
                        f"[{run.run_key}] Hint {checkpoint_hint.value} names a completed step; ignored"
                    )
                continue

            if checkpoint_hint is not None and checkpoint_hint == step.failed_label:
                logger.info(f"[{run.run_key}] Retrying failed step {step.value}")
            else:
                logger.info(f"[{run.run_key}] Running step {step.value}")

            await self._run_step(run, step)

        summary = run.state.insert_result
        if summary is not None and summary.total_errors > 0:
            run.status = RunStatus.PARTIALLY_FAILED
            run.error_message = summary.error
        else:
            run.status = RunStatus.COMPLETED

        await self._post_sync(run)
        await self.checkpoint_store.save(run)
        await self._report(run)

        result = RunResult.from_run(run, execution_id=execution_id, resumed=resumed)
        logger.info(
            f"Run {run.run_key} finished: {run.status.value} - "
            f"Records: {result.total_records}, Processed: {result.total_processed}, "
            f"Errors: {result.total_errors}"
        )
        return result

    async def _run_step(self, run: RunRecord, step: PipelineStep):
        handler = self._steps[step]

        try:
            if self.step_timeout:
                await asyncio.wait_for(handler(run), timeout=self.step_timeout)
            else:
                await handler(run)

        except asyncio.CancelledError:
            logger.warning(f"[{run.run_key}] Step {step.value} cancelled")
            await self._mark_failed(run, step, "Cancelled by caller")
            raise

        except asyncio.TimeoutError as e:
            error = StepTimeoutError(
                f"Step {step.value} exceeded {self.step_timeout}s",
                context={"run_key": run.run_key, "step": step.value},
                original_exception=e
            )
            await self._mark_failed(run, step, error.message)
            raise StepFailedError(
                error.message,
                run_key=run.run_key,
                step=step.value,
                checkpoint=step.failed_label.value,
                original_exception=error
            )

        except Exception as e:
            message = getattr(e, "message", None) or f"{type(e).__name__}: {e}"
            logger.error(
                f"[{run.run_key}] Step {step.value} failed: {message}",
                extra={"error_context": e.to_dict() if hasattr(e, "to_dict") else {}}
            )
            await self._mark_failed(run, step, message)
            raise StepFailedError(
                f"Step {step.value} failed: {message}",
                run_key=run.run_key,
                step=step.value,
                checkpoint=step.failed_label.value,
                original_exception=e
            )

        run.state.mark_completed(step)
        run.checkpoint = step.completed_label
        await self.checkpoint_store.save(run)
        await self._report(run)
        logger.info(f"[{run.run_key}] Checkpoint {run.checkpoint.value}")

    async def _mark_failed(self, run: RunRecord, step: PipelineStep, message: str):
        run.state.mark_failed(step, f"{step.value}: {message}")
        run.checkpoint = step.failed_label
        run.status = RunStatus.FAILED
        run.error_message = message
        await self.checkpoint_store.save(run)
        await self._report(run)

    async def _post_sync(self, run: RunRecord):
        """Run the pipeline's post-sync calls; failures are recorded, never raised"""
        if self.post_sync_caller is None or not self.pipeline.post_sync:
            return
        try:
            outcomes = await self.post_sync_caller.run_all(self.pipeline.post_sync, run.run_key)
        except Exception as e:
            logger.warning(f"[{run.run_key}] Post-sync calls failed: {type(e).__name__}: {e}")
            run.state.errors.append(f"post_sync: {type(e).__name__}: {e}")
            return
        for name, ok in outcomes.items():
            if not ok:
                run.state.errors.append(f"post_sync: {name} failed")

    async def _report(self, run: RunRecord):
        """Push the run status; a failed push never fails the run"""
        if self.status_reporter is None:
            return
        try:
            await self.status_reporter.report(
                table_name=self.pipeline.table_name,
                status=run.status.value,
                unique_key=run.run_key,
                error_message=run.error_message
            )
        except Exception as e:
            logger.warning(
                f"[{run.run_key}] Status push for {run.status.value} failed: {type(e).__name__}: {e}"
            )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _fetch(self, run: RunRecord):
        path = run.state.source_path or self.pipeline.source_path
        records = await self.source.fetch(path)
        data_key = await self.fetch_cache.save(self.pipeline.table_name, "fetch", records)
        run.state.fetch_result = FetchResult(data_key=data_key, total_records=len(records))
        logger.info(f"[{run.run_key}] Fetched {len(records)} records from {path}")

    async def _process(self, run: RunRecord):
        if run.state.fetch_result is None:
            raise InvalidRunStateError("Processing requires a fetch result", context={"run_key": run.run_key})

        records = await self.fetch_cache.load(run.state.fetch_result.data_key)
        normalizer = RecordNormalizer(self.pipeline.name, run_key=run.run_key)
        rows, error_count = normalizer.normalize_all(records)

        data_key = await self.fetch_cache.save(self.pipeline.table_name, "processed", rows)
        run.state.process_result = ProcessResult(
            data_key=data_key,
            total_processed=len(rows),
            total_errors=error_count
        )

    async def _insert(self, run: RunRecord):
        if run.state.process_result is None:
            raise InvalidRunStateError("Insertion requires a process result", context={"run_key": run.run_key})

        rows = await self.fetch_cache.load(run.state.process_result.data_key)
        summary = await self.writer.write(rows, chunk_size=self.chunk_size, max_retries=self.max_retries)
        run.state.insert_result = summary

        if not summary.success:
            raise LoadError(
                f"No chunk of {summary.chunks_processed} could be written",
                context={
                    "table_name": self.pipeline.table_name,
                    "total_records": summary.total_records,
                    "failed_chunks": summary.failed_chunks,
                    "last_error": summary.error,
                }
            )


def create_coordinator(
    pipeline_name: str,
    settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker,
    source: Optional[RecordSource] = None,
    status_reporter: Optional[StatusReporter] = None,
    post_sync_caller: Optional[PostSyncCaller] = None
) -> PipelineCoordinator:
    """
    Wire a coordinator for a registered pipeline from application settings.

    Shared source, reporter and post-sync caller instances may be passed in
    so concurrent runs reuse one HTTP client each.
    """
    pipeline = get_pipeline(pipeline_name)

    if source is None:
        source = FirebaseRecordSource(
            settings.FIREBASE_DATABASE_URL,
            auth_token=settings.FIREBASE_AUTH_TOKEN,
            timeout=settings.CALL_TIMEOUT_SECONDS
        )
    if status_reporter is None:
        status_reporter = StatusReporter(
            settings.STATUS_ENDPOINT_URL,
            timeout=settings.STATUS_TIMEOUT_SECONDS
        )
    if post_sync_caller is None:
        post_sync_caller = PostSyncCaller(
            settings.POST_SYNC_BASE_URL,
            timeout=settings.POST_SYNC_TIMEOUT_SECONDS
        )

    writer = ChunkedBulkWriter(
        EngineExecutor(engine),
        pipeline.mapping,
        chunk_size=settings.SYNC_CHUNK_SIZE,
        max_retries=settings.SYNC_MAX_RETRIES,
        call_timeout=settings.CALL_TIMEOUT_SECONDS,
        concurrency=settings.SYNC_WRITE_CONCURRENCY
    )

    return PipelineCoordinator(
        pipeline=pipeline,
        source=source,
        checkpoint_store=SQLAlchemyCheckpointStore(
            engine, session_factory, call_timeout=settings.CALL_TIMEOUT_SECONDS
        ),
        fetch_cache=FetchCacheStore(session_factory, call_timeout=settings.CALL_TIMEOUT_SECONDS),
        writer=writer,
        status_reporter=status_reporter,
        step_timeout=settings.STEP_TIMEOUT_SECONDS,
        post_sync_caller=post_sync_caller
    )
