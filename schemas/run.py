"""
Pydantic schemas for run state, write outcomes and run results.

RunState is the unit persisted in Sync_Status.workflow_state and restored on
resume. It serializes with camelCase keys (step1Completed, fetchResult, ...)
so persisted rows stay readable by the resume tooling.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel

from core.exceptions import InvalidRunStateError
from models.base import CheckpointLabel, PipelineStep, RunStatus, STEP_ORDER

_STEP_FLAGS: Dict[PipelineStep, str] = {
    PipelineStep.FETCH: "step1_completed",
    PipelineStep.PROCESSING: "step2_completed",
    PipelineStep.INSERTION: "step3_completed",
}


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        use_enum_values = False


# ============================================================================
# Step results
# ============================================================================

class FetchResult(CamelModel):
    """Reference to the fetched snapshot stored in the fetch cache"""
    data_key: str
    total_records: int = 0


class ProcessResult(CamelModel):
    """Reference to the transformed record set stored in the fetch cache"""
    data_key: str
    total_processed: int = 0
    total_errors: int = 0


class ChunkOutcome(CamelModel):
    """Result of writing one chunk"""
    index: int
    size: int
    processed_count: int = 0
    affected_rows: int = 0
    attempts: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class WriteSummary(CamelModel):
    """Aggregated result of a bulk write"""
    success: bool
    total_records: int = 0
    total_processed: int = 0
    total_errors: int = 0
    chunks_processed: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    affected_rows: int = 0
    error: Optional[str] = None
    chunk_outcomes: List[ChunkOutcome] = Field(default_factory=list)

    @classmethod
    def from_outcomes(cls, total_records: int, outcomes: List[ChunkOutcome]) -> "WriteSummary":
        successful = [o for o in outcomes if o.succeeded]
        failed = [o for o in outcomes if not o.succeeded]
        summary = cls(
            success=bool(successful) or total_records == 0,
            total_records=total_records,
            total_processed=sum(o.processed_count for o in successful),
            total_errors=sum(o.size for o in failed),
            chunks_processed=len(outcomes),
            successful_chunks=len(successful),
            failed_chunks=len(failed),
            affected_rows=sum(o.affected_rows for o in successful),
            chunk_outcomes=sorted(outcomes, key=lambda o: o.index),
        )
        if failed:
            summary.error = "; ".join(f"chunk {o.index + 1}: {o.error}" for o in failed)
        return summary


# ============================================================================
# Run state
# ============================================================================

class RunState(CamelModel):
    """
    Serializable snapshot of step completion and carried results.

    Only references to stored record sets are carried, never the records.
    """
    step1_completed: bool = False
    step2_completed: bool = False
    step3_completed: bool = False
    fetch_result: Optional[FetchResult] = None
    process_result: Optional[ProcessResult] = None
    insert_result: Optional[WriteSummary] = None
    errors: List[str] = Field(default_factory=list)
    last_checkpoint: Optional[CheckpointLabel] = None
    source_path: Optional[str] = None
    started_at: Optional[datetime] = None

    @validator("errors", pre=True)
    def ensure_error_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    def is_completed(self, step: PipelineStep) -> bool:
        return getattr(self, _STEP_FLAGS[step])

    def mark_completed(self, step: PipelineStep):
        """Set a step's completion flag; predecessors must already be set."""
        for earlier in STEP_ORDER[:STEP_ORDER.index(step)]:
            if not self.is_completed(earlier):
                raise InvalidRunStateError(
                    f"Cannot complete {step.value} before {earlier.value}",
                    context={"step": step.value, "missing": earlier.value}
                )
        setattr(self, _STEP_FLAGS[step], True)
        self.last_checkpoint = step.completed_label

    def mark_failed(self, step: PipelineStep, error: str):
        self.errors.append(error)
        self.last_checkpoint = step.failed_label

    def check_step_order(self):
        """Reject states where a later step is complete but an earlier one is not."""
        seen_incomplete = None
        for step in STEP_ORDER:
            if not self.is_completed(step):
                seen_incomplete = seen_incomplete or step
            elif seen_incomplete is not None:
                raise InvalidRunStateError(
                    f"Step {step.value} marked complete before {seen_incomplete.value}",
                    context={"step": step.value, "missing": seen_incomplete.value}
                )
        if self.step1_completed and self.fetch_result is None:
            raise InvalidRunStateError("Fetch marked complete without a fetch result")
        if self.step2_completed and self.process_result is None:
            raise InvalidRunStateError("Processing marked complete without a process result")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude={"insert_result": {"chunk_outcomes"}})

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "RunState":
        if not raw:
            return cls()
        return cls.model_validate_json(raw)


# ============================================================================
# Run
# ============================================================================

class RunRecord(BaseModel):
    """One pipeline execution as persisted in the checkpoint store"""
    run_key: str = Field(..., min_length=1, max_length=255)
    pipeline_name: str = Field(..., min_length=1, max_length=100)
    status: RunStatus = RunStatus.INITIALIZING
    checkpoint: Optional[CheckpointLabel] = None
    error_message: Optional[str] = None
    state: RunState = Field(default_factory=RunState)
    updated_at: Optional[datetime] = None

    @property
    def created_at(self) -> Optional[datetime]:
        return self.state.started_at


class RunResult(CamelModel):
    """Aggregate outcome returned by run_fresh / resume"""
    execution_id: str
    run_key: str
    pipeline_name: str
    status: RunStatus
    resumed: bool = False
    total_records: int = 0
    total_processed: int = 0
    total_errors: int = 0
    successful_chunks: int = 0
    failed_chunks: int = 0
    errors: List[str] = Field(default_factory=list)
    checkpoint: Optional[CheckpointLabel] = None

    @classmethod
    def from_run(cls, run: RunRecord, execution_id: str, resumed: bool = False) -> "RunResult":
        summary = run.state.insert_result
        return cls(
            execution_id=execution_id,
            run_key=run.run_key,
            pipeline_name=run.pipeline_name,
            status=run.status,
            resumed=resumed,
            total_records=summary.total_records if summary else 0,
            total_processed=summary.total_processed if summary else 0,
            total_errors=summary.total_errors if summary else 0,
            successful_chunks=summary.successful_chunks if summary else 0,
            failed_chunks=summary.failed_chunks if summary else 0,
            errors=list(run.state.errors),
            checkpoint=run.checkpoint,
        )
