"""
Sync endpoints: start, resume and inspect runs
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from typing import Callable, Optional
import uuid
import logging

from api.dependencies import get_checkpoint_store, get_coordinator_factory
from core.exceptions import CannotResumeError, ETLException, InvalidRunStateError
from ingestion.checkpoint_store import CheckpointStore
from ingestion.pipelines import PIPELINES
from ingestion.runner import PipelineCoordinator
from schemas.api import (
    ResumeSyncRequest,
    ResumeSyncResponse,
    RunInfo,
    RunListResponse,
    StartSyncRequest,
    StartSyncResponse,
)
from schemas.run import RunRecord

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


def _to_info(run: RunRecord) -> RunInfo:
    summary = run.state.insert_result
    return RunInfo(
        run_key=run.run_key,
        pipeline_name=run.pipeline_name,
        status=run.status,
        checkpoint=run.checkpoint,
        error_message=run.error_message,
        updated_at=run.updated_at,
        step1_completed=run.state.step1_completed,
        step2_completed=run.state.step2_completed,
        step3_completed=run.state.step3_completed,
        total_processed=summary.total_processed if summary else 0,
        total_errors=summary.total_errors if summary else 0,
    )


def _build_coordinator(factory: Callable[[str], PipelineCoordinator], pipeline_name: str) -> PipelineCoordinator:
    if pipeline_name not in PIPELINES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown pipeline '{pipeline_name}'. Available: {', '.join(sorted(PIPELINES))}"
        )
    return factory(pipeline_name)


async def _run_in_background(request_id: str, action: str, call, **kwargs):
    """Await a coordinator call; failures are already persisted on the run"""
    try:
        result = await call(**kwargs)
        logger.info(f"[{request_id}] {action} finished: {result.run_key} {result.status.value}")
    except ETLException as e:
        logger.error(
            f"[{request_id}] {action} failed: {e.message}",
            extra={"error_context": e.to_dict()}
        )


@router.post("/start", response_model=StartSyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_sync(
    body: StartSyncRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    factory: Callable[[str], PipelineCoordinator] = Depends(get_coordinator_factory)
):
    """
    Start a fresh run of a pipeline.

    The run key is allocated up front and returned immediately; the run
    itself proceeds as a background task.
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    coordinator = _build_coordinator(factory, body.pipeline_name)

    run_key = coordinator.new_run_key(body.pipeline_name)
    logger.info(f"[{request_id}] POST /sync/start - pipeline={body.pipeline_name}, run_key={run_key}")

    background_tasks.add_task(
        _run_in_background,
        request_id,
        f"Sync {body.pipeline_name}",
        coordinator.run_fresh,
        source_path=body.source_path,
        run_key=run_key
    )

    return StartSyncResponse(run_key=run_key, pipeline_name=body.pipeline_name)


@router.post("/resume", response_model=ResumeSyncResponse, status_code=status.HTTP_202_ACCEPTED)
async def resume_sync(
    body: ResumeSyncRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    factory: Callable[[str], PipelineCoordinator] = Depends(get_coordinator_factory),
    store: CheckpointStore = Depends(get_checkpoint_store)
):
    """
    Resume a persisted run.

    Returns a new execution id; the original run key keeps identifying the
    persisted state. Unknown run keys are rejected before anything starts.
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")
    coordinator = _build_coordinator(factory, body.pipeline_name)

    try:
        run = await store.load_by_run_key(body.run_key)
        if run is None:
            raise CannotResumeError(body.run_key)
    except CannotResumeError as e:
        logger.warning(f"[{request_id}] POST /sync/resume rejected: {e.message}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except InvalidRunStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    if run.pipeline_name != body.pipeline_name:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Run {body.run_key} belongs to pipeline {run.pipeline_name}"
        )

    execution_id = coordinator.new_execution_id()
    logger.info(
        f"[{request_id}] POST /sync/resume - run_key={body.run_key}, execution_id={execution_id}, "
        f"hint={body.checkpoint_hint.value if body.checkpoint_hint else None}"
    )

    background_tasks.add_task(
        _run_in_background,
        request_id,
        f"Resume {body.run_key}",
        coordinator.resume,
        run_key=body.run_key,
        checkpoint_hint=body.checkpoint_hint,
        execution_id=execution_id
    )

    return ResumeSyncResponse(
        execution_id=execution_id,
        run_key=body.run_key,
        pipeline_name=body.pipeline_name,
        checkpoint_hint=body.checkpoint_hint
    )


@router.get("/runs", response_model=RunListResponse)
async def list_runs(
    pipeline_name: Optional[str] = Query(None, alias="pipelineName", description="Filter by pipeline"),
    limit: int = Query(20, ge=1, le=200, description="Number of runs to return"),
    store: CheckpointStore = Depends(get_checkpoint_store)
):
    """Most recently saved runs, newest first"""
    runs = await store.list_runs(pipeline_name=pipeline_name, limit=limit)
    return RunListResponse(runs=[_to_info(r) for r in runs], count=len(runs))


@router.get("/runs/{run_key}", response_model=RunInfo)
async def get_run(run_key: str, store: CheckpointStore = Depends(get_checkpoint_store)):
    try:
        run = await store.load_by_run_key(run_key)
    except InvalidRunStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No persisted state for run {run_key}")
    return _to_info(run)
