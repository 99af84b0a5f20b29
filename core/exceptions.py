"""
Custom exceptions for the sync pipeline with structured error context.

Every exception carries a human-readable message, a context dictionary and
the original exception (if any), so failures can be logged and persisted to
the checkpoint record with enough detail to diagnose and resume a run.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   └── SourceFetchError
    ├── TransformationError
    ├── LoadError
    │   └── ChunkWriteError
    ├── CheckpointError
    │   ├── PersistenceError
    │   ├── InvalidRunStateError
    │   └── CannotResumeError
    ├── StepFailedError
    ├── StepTimeoutError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ETLException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (run_key, step, table, ...)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that may succeed when attempted again.

    Used for transient failures such as:
    - Network timeouts
    - Lock wait timeouts and deadlocks on the relational store
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ETLException):
    """
    Mixin for errors that must NOT be retried automatically.

    Used for permanent failures such as:
    - Checkpoint storage unreachable
    - Malformed persisted run state
    - Resume requested for an unknown run
    """
    pass


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for record source failures."""
    pass


class SourceFetchError(ExtractionError):
    """
    Raised when the document store cannot return a snapshot for a path.

    Context should include:
        - source_path: Path that was requested
        - status_code: HTTP status code (if applicable)
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Raised when a record set cannot be transformed."""
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for relational store write failures."""
    pass


class ChunkWriteError(RetryableError, LoadError):
    """
    A single chunk upsert attempt failed.

    Context should include:
        - table_name: Target table
        - chunk_index: Zero-based chunk index
        - attempt: Attempt number (1-based)
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(ETLException):
    """Base exception for checkpoint storage and resume failures."""
    pass


class PersistenceError(NonRetryableError, CheckpointError):
    """
    The checkpoint store could not read or write a run record.

    The caller must surface this and abort: continuing without a persisted
    checkpoint would leave the run state ambiguous.
    """
    pass


class InvalidRunStateError(NonRetryableError, CheckpointError):
    """The persisted workflow state is malformed or breaks step ordering."""
    pass


class CannotResumeError(NonRetryableError, CheckpointError):
    """Resume was requested for a run key with no persisted state."""

    def __init__(self, run_key: str, context: Optional[Dict[str, Any]] = None):
        context = dict(context or {})
        context["run_key"] = run_key
        super().__init__(f"No persisted state for run {run_key}", context)
        self.run_key = run_key


# ============================================================================
# Pipeline Errors
# ============================================================================

class StepFailedError(ETLException):
    """
    A pipeline step failed terminally; the run has been marked Failed.

    Attributes:
        run_key: Run that failed
        step: Name of the step that failed
        checkpoint: Failure checkpoint label that was persisted
    """

    def __init__(
        self,
        message: str,
        run_key: str,
        step: str,
        checkpoint: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        context = dict(context or {})
        context.update({"run_key": run_key, "step": step, "checkpoint": checkpoint})
        super().__init__(message, context, original_exception)
        self.run_key = run_key
        self.step = step
        self.checkpoint = checkpoint


class StepTimeoutError(ETLException):
    """A step or external call exceeded its time budget."""
    pass
