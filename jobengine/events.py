"""
In-process event emitter for worker lifecycle events.

Workers publish ``completed`` and ``failed`` events here; logging, metrics,
and any application-level subscribers listen without the worker knowing
about them.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from jobengine.types.events import JobEvent

logger = logging.getLogger(__name__)

Listener = Callable[[JobEvent], Awaitable[None] | None]


class EventEmitter:
    """
    Fan-out of job events to subscribed listeners.

    Listeners may be plain functions or coroutine functions. A listener that
    raises is logged and skipped; it never affects the emitter or other
    listeners.
    """

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event_type: str, listener: Listener) -> Listener:
        """
        Subscribe a listener to an event type.

        Args:
            event_type: "completed" or "failed".
            listener: Callable receiving the ``JobEvent``.

        Returns:
            The listener, so this can be used as a decorator.
        """
        self._listeners[event_type].append(listener)
        return listener

    def off(self, event_type: str, listener: Listener) -> None:
        """Unsubscribe a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    async def emit(self, event: JobEvent) -> None:
        """
        Deliver an event to every listener for its type, in subscription order.

        Args:
            event: The event to deliver.
        """
        for listener in list(self._listeners.get(event.event_type, [])):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    f"Event listener failed: {e}",
                    extra={
                        "event_type": event.event_type,
                        "job_id": str(event.job_id),
                    },
                    exc_info=True,
                )
