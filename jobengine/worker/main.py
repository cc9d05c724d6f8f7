"""
Worker process entry point.

Connects to the store, starts one worker per configured queue, the reaper,
and the scheduler loop, then waits for SIGTERM/SIGINT to shut down in order.
"""

import asyncio
import functools
import importlib
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from jobengine.config import get_settings
from jobengine.constants import ShutdownState
from jobengine.db.connection import get_engine
from jobengine.errors import StoreConnectionError
from jobengine.observability.logging import setup_logging
from jobengine.observability.metrics import setup_metrics, start_metrics_server
from jobengine.observability.subscribers import attach_observers
from jobengine.observability.tracing import instrument_sqlalchemy, setup_tracing
from jobengine.queues import WORKER_CONFIGS, QueueHandle, create_queues
from jobengine.scheduler.loop import SchedulerLoop
from jobengine.scheduler.reaper import Reaper
from jobengine.shutdown import ShutdownCoordinator
from jobengine.store import PostgresStore, QueueStore, create_store
from jobengine.types.job import WorkerConfig
from jobengine.worker.engine import Worker
from jobengine.worker.handlers import get_handler

logger = logging.getLogger(__name__)


def import_handler_modules(modules: list[str]) -> None:
    """Import modules whose ``@register_handler`` decorators fill the registry."""
    for module in modules:
        importlib.import_module(module)
        logger.info(f"Loaded handler module: {module}")


def load_routine(path: str) -> Callable[..., Awaitable[Any]]:
    """
    Resolve a "package.module:function" path.

    Args:
        path: Import path of the production routine.

    Returns:
        The routine.

    Raises:
        ValueError: If the path is malformed.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:function', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


def build_workers(
    store: QueueStore,
    queue_names: list[str],
    configs: dict[str, WorkerConfig] | None = None,
) -> list[Worker]:
    """
    Create a worker for every queue that has a registered handler.

    Args:
        store: The queue store.
        queue_names: Queues this process consumes.
        configs: Worker limits by queue name.

    Returns:
        Unstarted workers.
    """
    configs = configs or WORKER_CONFIGS
    workers = []
    for name in queue_names:
        if get_handler(name) is None:
            logger.warning(f"No handler registered for queue {name}, not consuming it")
            continue
        config = configs.get(name) or WorkerConfig(queue_name=name)
        worker = Worker(config, store)
        attach_observers(worker.events)
        workers.append(worker)
    return workers


def build_scheduler(queues: dict[str, QueueHandle]) -> SchedulerLoop | None:
    """Create the scheduler loop if a production routine is configured."""
    settings = get_settings()
    if not settings.scheduler_enabled or not settings.scheduler_routine:
        logger.info("No scheduler routine configured, scheduler disabled")
        return None

    routine = load_routine(settings.scheduler_routine)
    return SchedulerLoop(
        functools.partial(routine, queues),
        interval_seconds=settings.scheduler_interval_seconds,
    )


async def run_async() -> None:
    """Run the worker process until a termination signal completes shutdown."""
    settings = get_settings()

    setup_logging()
    setup_metrics()
    if settings.metrics_enabled:
        start_metrics_server(settings.prometheus_port)
    if settings.tracing_enabled:
        setup_tracing()

    logger.info("Workers starting")

    store = create_store()
    await store.connect()
    if settings.tracing_enabled and isinstance(store, PostgresStore):
        instrument_sqlalchemy(get_engine().sync_engine)

    queues = create_queues(store)
    import_handler_modules(settings.handler_modules)

    workers = build_workers(store, settings.worker_queues)
    scheduler = build_scheduler(queues)
    reaper = Reaper(store)

    coordinator = ShutdownCoordinator(
        store,
        workers=workers,
        scheduler=scheduler,
        reaper=reaper,
    )
    coordinator.install_signal_handlers()
    try:
        for worker in workers:
            await worker.start()
        await reaper.start()
        if scheduler is not None and coordinator.state == ShutdownState.RUNNING:
            await scheduler.start()

        logger.info(
            "Workers active and listening for jobs",
            extra={"queues": [worker.queue_name for worker in workers]}
        )

        await coordinator.wait()
    finally:
        coordinator.remove_signal_handlers()


def run() -> None:
    """Run the worker process."""
    try:
        asyncio.run(run_async())
    except StoreConnectionError as e:
        logger.critical(f"Could not connect to store: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
