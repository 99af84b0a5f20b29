"""
FastAPI dependencies backed by the components built at startup
"""

from typing import AsyncGenerator, Callable

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.checkpoint_store import CheckpointStore, SQLAlchemyCheckpointStore
from ingestion.runner import PipelineCoordinator, create_coordinator


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session from the application's session factory"""
    async with request.app.state.session_factory() as session:
        yield session


def get_checkpoint_store(request: Request) -> CheckpointStore:
    state = request.app.state
    return SQLAlchemyCheckpointStore(
        state.engine,
        state.session_factory,
        call_timeout=state.settings.CALL_TIMEOUT_SECONDS
    )


def get_coordinator_factory(request: Request) -> Callable[[str], PipelineCoordinator]:
    """
    Factory building a coordinator for a pipeline name.

    Raises KeyError for unknown pipelines.
    """
    state = request.app.state

    def factory(pipeline_name: str) -> PipelineCoordinator:
        return create_coordinator(
            pipeline_name,
            state.settings,
            state.engine,
            state.session_factory,
            source=state.source,
            status_reporter=state.status_reporter,
            post_sync_caller=state.post_sync_caller
        )

    return factory
