"""
Record-set storage carried between pipeline steps
"""

from typing import Any, Awaitable, Dict, List, Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from models.fetch_cache import FetchCache
from core.exceptions import InvalidRunStateError, PersistenceError
import asyncio
import json
import logging
import time
import uuid

logger = logging.getLogger(__name__)


class FetchCacheStore:
    """
    Store fetched and transformed record sets under a data key.

    RunState only carries the data key, so a resumed run can pick up the
    records of a completed step without going back to the source.
    """

    def __init__(self, session_factory: async_sessionmaker, call_timeout: Optional[float] = 300.0):
        self.session_factory = session_factory
        self.call_timeout = call_timeout

    @staticmethod
    def new_data_key(table_name: str, stage: str) -> str:
        return f"{table_name.lower()}_{stage}_{int(time.time() * 1000)}_{uuid.uuid4().hex}"

    async def _bounded(self, call: Awaitable[Any]) -> Any:
        if self.call_timeout:
            return await asyncio.wait_for(call, timeout=self.call_timeout)
        return await call

    async def _insert(self, entry: FetchCache):
        async with self.session_factory() as session:
            session.add(entry)
            await session.commit()

    async def _select_payload(self, data_key: str) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(FetchCache.data_json).where(FetchCache.data_key == data_key)
            )
            return result.scalar_one_or_none()

    async def save(self, table_name: str, stage: str, records: List[Dict[str, Any]]) -> str:
        """
        Persist a record set.

        Returns:
            The data key referencing the stored records
        """
        data_key = self.new_data_key(table_name, stage)
        context = {"table_name": table_name, "stage": stage, "records": len(records)}
        entry = FetchCache(
            data_key=data_key,
            table_name=table_name,
            data_json=json.dumps(records, default=str),
            record_count=len(records)
        )

        try:
            await self._bounded(self._insert(entry))
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                "Timed out storing record set",
                context={**context, "timeout": self.call_timeout},
                original_exception=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to store record set",
                context=context,
                original_exception=e
            )

        logger.info(f"Stored {len(records)} {table_name} records under {data_key}")
        return data_key

    async def load(self, data_key: str) -> List[Dict[str, Any]]:
        """
        Load a record set by data key.

        Raises:
            InvalidRunStateError: If the key references nothing
            PersistenceError: If the store cannot be read in time
        """
        try:
            raw = await self._bounded(self._select_payload(data_key))
        except asyncio.TimeoutError as e:
            raise PersistenceError(
                "Timed out loading record set",
                context={"data_key": data_key, "timeout": self.call_timeout},
                original_exception=e
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to load record set",
                context={"data_key": data_key},
                original_exception=e
            )

        if raw is None:
            raise InvalidRunStateError(
                "Run state references a record set that does not exist",
                context={"data_key": data_key}
            )

        try:
            records = json.loads(raw)
        except ValueError as e:
            raise InvalidRunStateError(
                "Stored record set is not valid JSON",
                context={"data_key": data_key},
                original_exception=e
            )
        if not isinstance(records, list):
            raise InvalidRunStateError(
                "Stored record set is not a list",
                context={"data_key": data_key}
            )
        return records
