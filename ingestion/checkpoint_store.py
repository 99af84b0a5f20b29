"""
Checkpoint persistence for resumable runs
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Awaitable, List, Optional
import asyncio

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlalchemy.dialects import mysql, postgresql, sqlite

from core.exceptions import InvalidRunStateError, PersistenceError
from models.base import CheckpointLabel, RunStatus
from models.sync_status import SyncStatus
from schemas.run import RunRecord, RunState
import logging

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """
    Persistence port for run checkpoints.

    Implementations upsert by run key (last write wins) and never enforce
    step ordering; that is the coordinator's job.
    """

    @abstractmethod
    async def save(self, run: RunRecord) -> int:
        """
        Upsert the run's checkpoint record.

        Raises:
            PersistenceError: On any storage failure
        """

    @abstractmethod
    async def load_by_run_key(self, run_key: str) -> Optional[RunRecord]:
        """
        Most recently saved record of a run, or None when the key is unknown.

        Raises:
            PersistenceError: On storage failure
            InvalidRunStateError: If the persisted state cannot be decoded
        """

    @abstractmethod
    async def list_runs(self, pipeline_name: Optional[str] = None, limit: int = 20) -> List[RunRecord]:
        """
        Most recently saved runs, newest first.

        Raises:
            PersistenceError: On storage failure
        """


class SQLAlchemyCheckpointStore(CheckpointStore):
    """
    Checkpoint store over the Sync_Status table.

    Uses INSERT ... ON DUPLICATE KEY UPDATE on MySQL and
    INSERT ... ON CONFLICT DO UPDATE on PostgreSQL / SQLite.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker,
        call_timeout: Optional[float] = 300.0
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.call_timeout = call_timeout

    async def _bounded(self, call: Awaitable[Any]) -> Any:
        if self.call_timeout:
            return await asyncio.wait_for(call, timeout=self.call_timeout)
        return await call

    def _upsert_statement(self, values: dict):
        dialect = self.engine.dialect.name
        mutable = ["status", "error_message", "checkpoint", "workflow_state", "sync_start_time"]

        if dialect == "mysql":
            stmt = mysql.insert(SyncStatus.__table__).values(**values)
            return stmt.on_duplicate_key_update({c: stmt.inserted[c] for c in mutable})

        if dialect in ("postgresql", "sqlite"):
            insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
            stmt = insert(SyncStatus.__table__).values(**values)
            return stmt.on_conflict_do_update(
                index_elements=["unique_key"],
                set_={c: stmt.excluded[c] for c in mutable}
            )

        raise PersistenceError(
            f"Unsupported dialect for checkpoint store: {dialect}",
            context={"dialect": dialect}
        )

    async def _execute_upsert(self, statement) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(statement)
        return result.rowcount

    async def _select_rows(self, query) -> List[SyncStatus]:
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def save(self, run: RunRecord) -> int:
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        values = {
            "table_name": run.pipeline_name,
            "unique_key": run.run_key,
            "status": run.status.value,
            "error_message": run.error_message,
            "checkpoint": run.checkpoint.value if run.checkpoint else None,
            "workflow_state": run.state.to_json(),
            "sync_start_time": now,
        }
        context = {
            "run_key": run.run_key,
            "status": run.status.value,
            "checkpoint": values["checkpoint"],
        }

        statement = self._upsert_statement(values)
        try:
            rowcount = await self._bounded(self._execute_upsert(statement))
        except asyncio.TimeoutError as e:
            logger.error(f"Timed out saving checkpoint for {run.run_key} after {self.call_timeout}s")
            raise PersistenceError(
                "Timed out saving workflow state",
                context={**context, "timeout": self.call_timeout},
                original_exception=e
            )
        except SQLAlchemyError as e:
            logger.error(f"Failed to save checkpoint for {run.run_key}: {e}")
            raise PersistenceError(
                "Failed to save workflow state",
                context=context,
                original_exception=e
            )

        run.updated_at = now
        logger.debug(
            f"Checkpoint saved for {run.run_key}: status={run.status.value}, "
            f"checkpoint={values['checkpoint']}"
        )
        return rowcount

    async def load_by_run_key(self, run_key: str) -> Optional[RunRecord]:
        query = select(SyncStatus).where(SyncStatus.unique_key == run_key)
        try:
            rows = await self._bounded(self._select_rows(query))
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                "Timed out retrieving workflow state",
                context={"run_key": run_key, "timeout": self.call_timeout},
                original_exception=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to retrieve workflow state",
                context={"run_key": run_key},
                original_exception=e
            )

        if not rows:
            logger.warning(f"No workflow state found for run {run_key}")
            return None

        return self._to_record(rows[0])

    async def list_runs(self, pipeline_name: Optional[str] = None, limit: int = 20) -> List[RunRecord]:
        """Newest runs first; rows whose state cannot be decoded are skipped"""
        query = select(SyncStatus).order_by(SyncStatus.sync_start_time.desc()).limit(limit)
        if pipeline_name:
            query = query.where(SyncStatus.table_name == pipeline_name)

        try:
            rows = await self._bounded(self._select_rows(query))
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                "Timed out listing runs",
                context={"pipeline_name": pipeline_name, "timeout": self.call_timeout},
                original_exception=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to list runs",
                context={"pipeline_name": pipeline_name},
                original_exception=e
            )

        runs = []
        for row in rows:
            try:
                runs.append(self._to_record(row))
            except InvalidRunStateError as e:
                logger.warning(
                    f"Skipping run {row.unique_key} with malformed state",
                    extra={"error_context": e.to_dict()}
                )
        return runs

    @staticmethod
    def _to_record(row: SyncStatus) -> RunRecord:
        try:
            return RunRecord(
                run_key=row.unique_key,
                pipeline_name=row.table_name,
                status=RunStatus(row.status),
                checkpoint=CheckpointLabel(row.checkpoint) if row.checkpoint else None,
                error_message=row.error_message,
                state=RunState.from_json(row.workflow_state),
                updated_at=row.sync_start_time,
            )
        except (PydanticValidationError, ValueError) as e:
            raise InvalidRunStateError(
                "Persisted workflow state is malformed",
                context={"run_key": row.unique_key, "status": row.status, "checkpoint": row.checkpoint},
                original_exception=e
            )
