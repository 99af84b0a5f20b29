"""
Script to start or resume a sync run from the command line

Usage:
    python scripts/run_sync.py start Retailers
    python scripts/run_sync.py start RetailerProducts --source-path Retailer_Products
    python scripts/run_sync.py resume RetailerProducts RetailerProducts_2024-01-01_00:00:00_ab12cd34 \
        --checkpoint-hint insertion_failed
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_database
from core.exceptions import ETLException
from core.logging import setup_logging
from ingestion.pipelines import PIPELINES
from ingestion.runner import create_coordinator
from models.base import CheckpointLabel

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a retail sync pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start a fresh run")
    start.add_argument("pipeline", choices=sorted(PIPELINES))
    start.add_argument("--source-path", default=None, help="Override the document store path")

    resume = sub.add_parser("resume", help="Resume a persisted run")
    resume.add_argument("pipeline", choices=sorted(PIPELINES))
    resume.add_argument("run_key")
    resume.add_argument(
        "--checkpoint-hint",
        choices=[label.value for label in CheckpointLabel],
        default=None,
        help="Failure label of the step to re-attempt (defaults to the stored checkpoint)"
    )
    return parser


async def run_sync(args: argparse.Namespace) -> int:
    engine, session_factory = build_database(settings.DATABASE_URL, pool_size=settings.DATABASE_POOL_SIZE)
    coordinator = create_coordinator(args.pipeline, settings, engine, session_factory)

    try:
        if args.command == "start":
            result = await coordinator.run_fresh(source_path=args.source_path)
        else:
            hint = CheckpointLabel(args.checkpoint_hint) if args.checkpoint_hint else None
            result = await coordinator.resume(args.run_key, checkpoint_hint=hint)

        logger.info(
            f"{result.pipeline_name} run {result.run_key}: {result.status.value} "
            f"(processed={result.total_processed}, errors={result.total_errors})"
        )
        return 0

    except ETLException as e:
        logger.error(f"Sync failed: {e}", extra={"error_context": e.to_dict()})
        return 1

    finally:
        await coordinator.source.close()
        if coordinator.status_reporter is not None:
            await coordinator.status_reporter.close()
        if coordinator.post_sync_caller is not None:
            await coordinator.post_sync_caller.close()
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(run_sync(build_parser().parse_args())))
