import logging
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from core.exceptions import ETLException
from ingestion.base import RecordSource
from ingestion.post_sync import PostSyncCaller
from ingestion.runner import create_coordinator
from ingestion.status_reporter import StatusReporter

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(
        self,
        settings,
        engine: AsyncEngine,
        session_factory: async_sessionmaker,
        source: Optional[RecordSource] = None,
        status_reporter: Optional[StatusReporter] = None,
        post_sync_caller: Optional[PostSyncCaller] = None
    ):
        self.settings = settings
        self.engine = engine
        self.session_factory = session_factory
        self.source = source
        self.status_reporter = status_reporter
        self.post_sync_caller = post_sync_caller
        self.scheduler = AsyncIOScheduler()

    async def run_sync_job(self):
        """Job to run a fresh sync of every scheduled pipeline"""
        logger.info(f"Scheduler: Starting sync job for {', '.join(self.settings.SCHEDULED_PIPELINES)}")
        results = {}

        for pipeline_name in self.settings.SCHEDULED_PIPELINES:
            try:
                coordinator = create_coordinator(
                    pipeline_name,
                    self.settings,
                    self.engine,
                    self.session_factory,
                    source=self.source,
                    status_reporter=self.status_reporter,
                    post_sync_caller=self.post_sync_caller
                )
                result = await coordinator.run_fresh()
                results[pipeline_name] = result.status.value
            except (ETLException, KeyError) as e:
                # One pipeline failing must not stop the others; the run is already persisted as Failed
                logger.error(f"Scheduler: {pipeline_name} sync failed - {e}")
                results[pipeline_name] = "Failed"

        logger.info(f"Scheduler: Sync job finished {results}")
        return results

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.settings.SYNC_INTERVAL_MINUTES),
            id="sync_job",
            replace_existing=True,
            max_instances=1
        )
        self.scheduler.start()
        logger.info(f"Sync Scheduler started (every {self.settings.SYNC_INTERVAL_MINUTES} minutes)")

    def stop(self):
        self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
