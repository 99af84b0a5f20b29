import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import create_engine
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.sync_status import SyncStatus  # noqa: F401
from models.fetch_cache import FetchCache  # noqa: F401
from models.targets import TARGET_MAPPINGS

logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    engine = create_engine(settings.DATABASE_URL)

    async with engine.begin() as conn:
        logger.info(
            f"Creating tables: Sync_Status, Sync_FetchCache, "
            f"{', '.join(m.table_name for m in TARGET_MAPPINGS)}"
        )
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
