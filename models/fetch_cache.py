from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Text, Index
from datetime import datetime, timezone
from sqlalchemy.dialects.mysql import LONGTEXT
from models.base import Base


class FetchCache(Base):
    """
    Stores fetched and transformed record sets between pipeline steps.

    Purpose:
    - Keep large record sets out of the persisted run state
    - Let a resumed run re-use the records of a completed step
      instead of fetching them again

    Design:
    - data_key is referenced from RunState (fetchResult / processResult)
    - data_json holds the full record list as JSON text
    """
    __tablename__ = "Sync_FetchCache"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)

    data_key = Column(String(255), nullable=False)
    table_name = Column(String(100), nullable=False, index=True)
    data_json = Column(Text().with_variant(LONGTEXT(), "mysql"), nullable=False)
    record_count = Column(Integer, nullable=False, default=0)

    created_at = Column(
        DateTime,
        nullable=False,
        default=lambda: datetime.now(timezone.utc).replace(tzinfo=None)
    )

    __table_args__ = (
        Index("idx_fetch_cache_data_key", "data_key", unique=True),
    )
