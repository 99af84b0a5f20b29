"""
Health check endpoint with database and recent run status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_checkpoint_store
from core.exceptions import CheckpointError
from ingestion.checkpoint_store import CheckpointStore
from ingestion.pipelines import PIPELINES
from models.base import RunStatus
from schemas.api import HealthCheckResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])

RECENT_RUN_WINDOW = 20


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    store: CheckpointStore = Depends(get_checkpoint_store)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Registered pipelines
    - Failed share of the most recent runs
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    recent_runs = 0
    failed_runs = 0

    if db_connected:
        try:
            runs = await store.list_runs(limit=RECENT_RUN_WINDOW)
            recent_runs = len(runs)
            failed_runs = sum(1 for r in runs if r.status == RunStatus.FAILED)
        except CheckpointError as e:
            logger.error(f"Failed to fetch recent runs: {e.message}")

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        database_connected=db_connected,
        pipelines=sorted(PIPELINES),
        recent_runs=recent_runs,
        failed_runs=failed_runs
    )
