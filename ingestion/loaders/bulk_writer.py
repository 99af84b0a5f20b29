"""
Chunked bulk writer with bounded retries and partial-failure tolerance.

Records are split into fixed-size chunks; each chunk is pushed through one
idempotent upsert statement. A failing chunk is retried with exponential
backoff (1s, 2s, 4s, capped at 5s) and abandoned after max_retries attempts
without aborting the remaining chunks. Errors that would repeat on every
attempt (bad values, constraint or SQL errors) abandon the chunk at once.
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import MetaData
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, ProgrammingError, StatementError
from sqlalchemy.ext.asyncio import AsyncEngine

from core.exceptions import ChunkWriteError
from ingestion.loaders.upsert import build_upsert
from models.targets import TableMapping
from schemas.run import ChunkOutcome, WriteSummary
import asyncio
import logging

logger = logging.getLogger(__name__)

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 5.0


class EngineExecutor:
    """
    Executes one statement per transaction and returns the affected-row count.

    Each chunk commits on its own: a failed chunk rolls back only itself.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def execute(self, statement) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(statement)
            return result.rowcount


class ChunkedBulkWriter:
    """
    Push a record set into a target table in chunks.

    Ensures:
    - Deterministic chunk boundaries for a given record order and chunk size
    - At most max_retries attempts per chunk, backoff only between attempts
    - total_processed + total_errors == len(records) for every outcome
    - success is true iff at least one chunk succeeded (or there was nothing to write)
    """

    def __init__(
        self,
        executor: EngineExecutor,
        mapping: TableMapping,
        chunk_size: int = 1000,
        max_retries: int = 3,
        call_timeout: Optional[float] = 300.0,
        concurrency: int = 1,
        metadata: Optional[MetaData] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.executor = executor
        self.mapping = mapping
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.call_timeout = call_timeout
        self.concurrency = concurrency
        self.table = mapping.to_table(metadata if metadata is not None else MetaData())
        self._sleep = sleep

    @staticmethod
    def chunk_records(records: Sequence[Dict[str, Any]], chunk_size: int) -> List[List[Dict[str, Any]]]:
        """Contiguous slices of chunk_size; the last one may be smaller."""
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        return [list(records[i:i + chunk_size]) for i in range(0, len(records), chunk_size)]

    @staticmethod
    def backoff_delay(attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        return min(BACKOFF_BASE_SECONDS * 2 ** (attempt - 1), BACKOFF_CAP_SECONDS)

    @staticmethod
    def is_retryable(error: BaseException) -> bool:
        """
        Whether another attempt of the same chunk could succeed.

        Value, integrity and SQL errors are deterministic for a given chunk;
        connection drops, lock waits and timeouts are not.
        """
        if isinstance(error, (ValueError, TypeError, DataError, IntegrityError, ProgrammingError)):
            return False
        if isinstance(error, StatementError) and not isinstance(error, DBAPIError):
            # Raised while binding parameters, before reaching the database
            return False
        if isinstance(error, DBAPIError):
            # Drivers raise client-side conversion failures as ValueError subclasses
            cause = error.orig
            while cause is not None:
                if isinstance(cause, (ValueError, TypeError)):
                    return False
                cause = cause.__cause__
        return True

    async def write(
        self,
        records: Sequence[Dict[str, Any]],
        chunk_size: Optional[int] = None,
        max_retries: Optional[int] = None
    ) -> WriteSummary:
        """
        Write all records.

        Args:
            records: Transformed records, keyed by the mapping's fields
            chunk_size: Override of the configured chunk size
            max_retries: Override of the configured attempts per chunk

        Returns:
            WriteSummary with per-chunk outcomes and totals
        """
        chunk_size = self.chunk_size if chunk_size is None else chunk_size
        max_retries = self.max_retries if max_retries is None else max_retries
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        chunks = self.chunk_records(records, chunk_size)
        if not chunks:
            logger.info(f"No {self.mapping.table_name} records to write")
            return WriteSummary.from_outcomes(0, [])

        logger.info(
            f"Writing {len(records)} records to {self.mapping.table_name} "
            f"in {len(chunks)} chunks of up to {chunk_size}"
        )

        if self.concurrency == 1:
            outcomes = []
            for index, chunk in enumerate(chunks):
                outcomes.append(await self._write_chunk(index, len(chunks), chunk, max_retries))
        else:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def guarded(index: int, chunk: List[Dict[str, Any]]) -> ChunkOutcome:
                async with semaphore:
                    return await self._write_chunk(index, len(chunks), chunk, max_retries)

            outcomes = list(await asyncio.gather(
                *(guarded(index, chunk) for index, chunk in enumerate(chunks))
            ))

        summary = WriteSummary.from_outcomes(len(records), outcomes)
        logger.info(
            f"{self.mapping.table_name} write summary: {summary.successful_chunks} successful chunks, "
            f"{summary.failed_chunks} failed chunks, processed={summary.total_processed}, "
            f"errors={summary.total_errors}"
        )
        return summary

    async def _write_chunk(
        self,
        index: int,
        total_chunks: int,
        chunk: List[Dict[str, Any]],
        max_retries: int
    ) -> ChunkOutcome:
        last_error: Optional[ChunkWriteError] = None

        for attempt in range(1, max_retries + 1):
            try:
                logger.debug(
                    f"Processing chunk {index + 1}/{total_chunks} "
                    f"(attempt {attempt}/{max_retries})"
                )
                affected_rows = await self._execute_chunk(chunk)
                logger.info(
                    f"Chunk {index + 1}/{total_chunks} written: {len(chunk)} records, "
                    f"{affected_rows} affected rows"
                )
                return ChunkOutcome(
                    index=index,
                    size=len(chunk),
                    processed_count=len(chunk),
                    affected_rows=affected_rows or 0,
                    attempts=attempt
                )
            except Exception as e:
                last_error = ChunkWriteError(
                    f"Chunk {index + 1}/{total_chunks} failed",
                    context={
                        "table_name": self.mapping.table_name,
                        "chunk_index": index,
                        "attempt": attempt,
                    },
                    original_exception=e,
                    max_retries=max_retries
                )
                logger.warning(
                    f"Chunk {index + 1}/{total_chunks} attempt {attempt}/{max_retries} failed: "
                    f"{type(e).__name__}: {e}"
                )
                if not self.is_retryable(e):
                    logger.error(
                        f"Chunk {index + 1}/{total_chunks} failed with a non-retryable error; abandoning",
                        extra={"error_context": last_error.to_dict()}
                    )
                    return self._abandoned(index, chunk, attempt, e)
                if attempt < max_retries:
                    delay = self.backoff_delay(attempt)
                    logger.info(f"Waiting {delay:.1f}s before retrying chunk {index + 1}")
                    await self._sleep(delay)

        logger.error(
            f"Chunk {index + 1}/{total_chunks} abandoned after {max_retries} attempts",
            extra={"error_context": last_error.to_dict() if last_error else {}}
        )
        cause = last_error.original_exception if last_error else None
        return self._abandoned(index, chunk, max_retries, cause)

    @staticmethod
    def _abandoned(index: int, chunk: List[Dict[str, Any]], attempts: int, cause: Optional[BaseException]) -> ChunkOutcome:
        return ChunkOutcome(
            index=index,
            size=len(chunk),
            attempts=attempts,
            error=f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        )

    async def _execute_chunk(self, chunk: List[Dict[str, Any]]) -> int:
        rows = [self.mapping.row_for(record) for record in chunk]
        statement = build_upsert(self.table, self.mapping, rows, self.executor.dialect_name)
        if self.call_timeout:
            return await asyncio.wait_for(self.executor.execute(statement), timeout=self.call_timeout)
        return await self.executor.execute(statement)
