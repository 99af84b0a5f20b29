"""
Core utilities and configuration for the retail sync engine.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory construction
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import build_database
    from core.exceptions import PersistenceError, CannotResumeError
    from core.logging import setup_logging

Example:
    setup_logging()

    engine, session_factory = build_database(settings.DATABASE_URL)
    async with session_factory() as session:
        ...
"""
