"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime, timezone
from models.base import CheckpointLabel, RunStatus
from schemas.run import CamelModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Sync Requests
# ============================================================================

class StartSyncRequest(CamelModel):
    """Start a fresh run of a pipeline"""
    pipeline_name: str = Field(..., min_length=1, description="Registered pipeline name, e.g. RetailerProducts")
    source_path: Optional[str] = Field(None, description="Document store path; defaults to the pipeline's path")

    @validator("source_path")
    def strip_source_path(cls, v):
        if v is None:
            return v
        v = v.strip().strip("/")
        if not v:
            raise ValueError("source_path cannot be empty")
        return v


class StartSyncResponse(CamelModel):
    run_key: str
    pipeline_name: str
    status: RunStatus = RunStatus.INITIALIZING
    started_at: datetime = Field(default_factory=_utcnow)


class ResumeSyncRequest(CamelModel):
    """Resume a persisted run from its last checkpoint"""
    run_key: str = Field(..., min_length=1)
    pipeline_name: str = Field(..., min_length=1)
    checkpoint_hint: Optional[CheckpointLabel] = None


class ResumeSyncResponse(CamelModel):
    execution_id: str
    run_key: str
    pipeline_name: str
    checkpoint_hint: Optional[CheckpointLabel] = None
    started_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Run Queries
# ============================================================================

class RunInfo(CamelModel):
    """Persisted checkpoint record of a run"""
    run_key: str
    pipeline_name: str
    status: RunStatus
    checkpoint: Optional[CheckpointLabel] = None
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None
    step1_completed: bool = False
    step2_completed: bool = False
    step3_completed: bool = False
    total_processed: int = 0
    total_errors: int = 0


class RunListResponse(CamelModel):
    runs: List[RunInfo] = Field(default_factory=list)
    count: int = 0


# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    database_connected: bool
    pipelines: List[str] = Field(default_factory=list)
    recent_runs: int = 0
    failed_runs: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)
    # Declared last so the validator sees the other fields
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        failed = values.get("failed_runs", 0)
        total = values.get("recent_runs", 0)

        if total == 0 or failed == 0:
            return "healthy"
        elif failed < total:
            return "degraded"
        else:
            return "unhealthy"
