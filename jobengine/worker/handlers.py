"""
Job handler registry and execution.

Handlers are supplied by the application, one per queue, and registered by
importing the module that defines them. Handlers must be idempotent: a worker
crash mid-execution leaves the job leased until the lease expires, after
which it is executed again.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from jobengine.errors import HandlerTimeoutError
from jobengine.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult | None]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(queue_name: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register the handler for a queue.

    Args:
        queue_name: The queue this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("notifications")
        async def handle_notification(context: JobContext) -> None:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        if queue_name in _handlers and _handlers[queue_name] is not handler:
            logger.warning(f"Replacing handler for queue: {queue_name}")
        _handlers[queue_name] = handler
        logger.info(f"Registered handler for queue: {queue_name}")
        return handler
    return decorator


def get_handler(queue_name: str) -> JobHandler | None:
    """
    Get the handler for a queue.

    Args:
        queue_name: The queue name.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(queue_name)


def unregister_handler(queue_name: str) -> None:
    """Remove a queue's handler, if any."""
    _handlers.pop(queue_name, None)


async def execute_handler(
    handler: JobHandler,
    context: JobContext,
    timeout_seconds: float | None = None,
) -> JobResult:
    """
    Run a handler and normalise its outcome.

    Returning None or a successful JobResult is success. Anything else is a
    failure: a failed JobResult, any other return value, an exception or
    exceeding the timeout. This function never raises for handler errors.

    Args:
        handler: The handler to run.
        context: The job context.
        timeout_seconds: Optional time limit.

    Returns:
        JobResult describing the attempt.
    """
    start = time.monotonic()
    try:
        if timeout_seconds is not None:
            try:
                result = await asyncio.wait_for(handler(context), timeout_seconds)
            except asyncio.TimeoutError as e:
                raise HandlerTimeoutError(timeout_seconds) from e
        else:
            result = await handler(context)
    except Exception as e:
        logger.warning(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "error": str(e)},
            exc_info=True,
        )
        return JobResult(
            success=False,
            error=str(e) or type(e).__name__,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    duration_ms = (time.monotonic() - start) * 1000

    if result is None:
        return JobResult(success=True, duration_ms=duration_ms)

    if not isinstance(result, JobResult):
        logger.warning(
            "Handler returned an unsupported result",
            extra={"job_id": str(context.job_id), "result_type": type(result).__name__},
        )
        return JobResult(
            success=False,
            error=f"Handler returned {type(result).__name__}, expected JobResult or None",
            duration_ms=duration_ms,
        )

    if not result.success and not result.error:
        result = result.model_copy(update={"error": "Handler reported failure"})
    return result.model_copy(update={"duration_ms": duration_ms})
