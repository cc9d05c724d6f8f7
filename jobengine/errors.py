"""
Exception hierarchy for the job engine.

Connectivity, enqueue, and shutdown errors are surfaced to callers. Handler
errors never leave the worker: they are recorded on the job and drive the
retry policy.
"""


class JobEngineError(Exception):
    """Base class for all job engine errors."""


class StoreError(JobEngineError):
    """An operation against the durable queue store failed."""


class StoreUnavailableError(StoreError):
    """The store could not be reached for a single operation."""


class StoreConnectionError(StoreError):
    """The store stayed unreachable after every connection attempt."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class EnqueueError(JobEngineError):
    """A job could not be added to its queue."""

    def __init__(self, queue_name: str, message: str):
        super().__init__(f"Failed to enqueue job on '{queue_name}': {message}")
        self.queue_name = queue_name


class PayloadValidationError(JobEngineError, ValueError):
    """A job payload is not a JSON-serializable mapping."""


class HandlerNotFoundError(JobEngineError, LookupError):
    """No handler is registered for a queue."""


class HandlerTimeoutError(JobEngineError, TimeoutError):
    """A handler exceeded its queue's time limit."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Handler timed out after {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds
