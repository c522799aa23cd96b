"""Per-object event dispatch for the spool runtime.

Every :class:`EventEmitter` owns its own listener table. There is no
class-level or process-wide registry; listeners registered on one task are
never visible to another.
"""

from __future__ import annotations

import logging
import threading
from typing import Any
from typing import Literal
from typing import Protocol
from typing import runtime_checkable

logger = logging.getLogger(__name__)


# public
TaskEventType = Literal[
    "resolve",
    "reject",
    "finally",
    "cancel",
    "progress",
]
"""
Defines the events emitted during the lifecycle of a spool task.

- "resolve":
    Emitted with the result when the task is fulfilled.
- "reject":
    Emitted with the error when the task is rejected or times out.
- "finally":
    Emitted exactly once when the task reaches any terminal state, after
    "resolve", "reject" or "cancel".
- "cancel":
    Emitted when the task is cancelled before reaching another terminal
    state.
- "progress":
    Emitted with arbitrary data whenever the work reports progress.
"""


# public
@runtime_checkable
class EventLike(Protocol):
    """Protocol for objects exposing an ordered listener table.

    The protocol is runtime checkable via isinstance().
    """

    def on(self, event: str, listener: Listener) -> Any: ...

    def emit(self, event: str, data: Any = None) -> None: ...


# public
@runtime_checkable
class Listener(Protocol):
    """Protocol for event listener callables.

    Listeners receive the emitted data as their only positional argument.
    Events without a payload ("finally", "cancel") pass None.
    """

    def __call__(self, data: Any = None, /) -> Any: ...


class EventEmitter:
    """Ordered, synchronous publish/subscribe table keyed by event name.

    Listeners for an event are invoked in registration order on whichever
    thread or coroutine performs the emission. Duplicate registrations are
    kept and invoked once per registration.

    **Example Usage**::

        from spool.runtime.event import EventEmitter

        emitter = EventEmitter()
        emitter.on("progress", lambda data: print(f"progress: {data}"))
        emitter.emit("progress", 50)
    """

    _listeners: dict[str, list[Listener]]

    def __init__(self) -> None:
        self._listeners = {}
        self._listeners_lock = threading.Lock()

    def on(self, event: str, listener: Listener):
        """Register a listener for the named event.

        Registering a listener for an event that has already been emitted
        does not invoke it retroactively.

        :param event:
            The event name.
        :param listener:
            Callable invoked with the event data.
        :returns:
            This emitter, to allow chaining.
        """
        if not callable(listener):
            raise TypeError(f"Listener must be callable, got {listener!r}")
        with self._listeners_lock:
            self._listeners.setdefault(event, []).append(listener)
        return self

    def listeners(self, event: str) -> tuple[Listener, ...]:
        """Snapshot of the listeners currently registered for an event."""
        with self._listeners_lock:
            return tuple(self._listeners.get(event, ()))

    def emit(self, event: str, data: Any = None) -> None:
        """Invoke every listener registered for the named event.

        The listener list is copied before the first invocation, so a
        listener registered by another listener during this emission only
        runs on a subsequent emission. Emitting an event with no listeners
        is a no-op.

        Exceptions raised by a listener are logged and do not prevent the
        remaining listeners from running.

        :param event:
            The event name.
        :param data:
            Optional payload passed to each listener.
        """
        for listener in self.listeners(event):
            try:
                listener(data)
            except Exception:
                logger.exception(f"Listener {listener!r} failed on {event!r} event")
