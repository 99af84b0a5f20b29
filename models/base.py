from sqlalchemy.ext.declarative import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class RunStatus(str, enum.Enum):
    """Lifecycle status of a sync run"""
    INITIALIZING = "Initializing"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
    PARTIALLY_FAILED = "PartiallyFailed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.PARTIALLY_FAILED)


class PipelineStep(str, enum.Enum):
    """Ordered pipeline steps"""
    FETCH = "fetch"
    PROCESSING = "processing"
    INSERTION = "insertion"

    @property
    def completed_label(self) -> "CheckpointLabel":
        return CheckpointLabel(f"{self.value}_completed")

    @property
    def failed_label(self) -> "CheckpointLabel":
        return CheckpointLabel(f"{self.value}_failed")


STEP_ORDER = (PipelineStep.FETCH, PipelineStep.PROCESSING, PipelineStep.INSERTION)


class CheckpointLabel(str, enum.Enum):
    """Last step boundary crossed by a run"""
    FETCH_COMPLETED = "fetch_completed"
    FETCH_FAILED = "fetch_failed"
    PROCESSING_COMPLETED = "processing_completed"
    PROCESSING_FAILED = "processing_failed"
    INSERTION_COMPLETED = "insertion_completed"
    INSERTION_FAILED = "insertion_failed"

    @property
    def step(self) -> PipelineStep:
        return PipelineStep(self.value.rsplit("_", 1)[0])

    @property
    def is_failure(self) -> bool:
        return self.value.endswith("_failed")
