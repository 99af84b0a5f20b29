from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from datetime import datetime, timezone
from models.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncStatus(Base):
    """
    Durable checkpoint record of a sync run.

    Purpose:
    - Single source of truth for resuming a run
    - Audit trail of the last known state of every run
    - Polled by resume tooling and the operator API

    Design:
    - One row per run, keyed by unique_key (the run key)
    - Upserted on every step transition (last write wins)
    - workflow_state holds the JSON-serialized RunState
    - Rows are never deleted by the pipeline; retention is external
    """
    __tablename__ = "Sync_Status"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Run identification
    table_name = Column(String(100), nullable=False, index=True)
    unique_key = Column(String(255), nullable=False)

    # Run state
    status = Column(String(50), nullable=False)
    error_message = Column(Text, nullable=True)
    checkpoint = Column(String(50), nullable=True)
    workflow_state = Column(Text, nullable=True)

    # Refreshed on every save
    sync_start_time = Column(DateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_sync_status_unique_key", "unique_key", unique=True),
    )
