from __future__ import annotations

from contextvars import ContextVar
from contextvars import Token
from typing import TYPE_CHECKING
from typing import Final

from spool.runtime.typing import Undefined
from spool.runtime.typing import UndefinedType

if TYPE_CHECKING:
    from spool.runtime.task.scheduler import Scheduler

default_timeout: Final[ContextVar[float | None]] = ContextVar(
    "default_timeout", default=None
)
poll_interval: Final[ContextVar[float]] = ContextVar("poll_interval", default=0.01)
scheduler: Final[ContextVar[Scheduler | None]] = ContextVar("scheduler", default=None)


# public
class RuntimeContext:
    """Runtime context for configuring spool behavior.

    Provides context-managed defaults for task timeouts, the polling
    interval used by cooperative sleeps, and the scheduler that
    :meth:`Task.set_priority` and :func:`race` fall back to when none is
    passed explicitly. Values not passed to the constructor are inherited
    from the enclosing context.

    **Example Usage**::

        scheduler = Scheduler()
        with RuntimeContext(default_timeout=5.0, scheduler=scheduler):
            task = Task(work).set_priority(3)

    :param default_timeout:
        Timeout in seconds applied to tasks created without one. ``None``
        disables the default.
    :param poll_interval:
        Longest uninterrupted wait, in seconds, inside
        :meth:`Task.sleep` before cancellation and timeouts are checked.
    :param scheduler:
        Scheduler used when an operation needs one and none was given.
    """

    _default_timeout: float | None | UndefinedType
    _poll_interval: float | UndefinedType
    _scheduler: Scheduler | None | UndefinedType
    _tokens: list[tuple[ContextVar, Token]]

    def __init__(
        self,
        *,
        default_timeout: float | None | UndefinedType = Undefined,
        poll_interval: float | UndefinedType = Undefined,
        scheduler: Scheduler | None | UndefinedType = Undefined,
    ):
        if default_timeout is not Undefined and default_timeout is not None:
            if default_timeout <= 0:
                raise ValueError(
                    f"Default timeout must be positive, got {default_timeout}"
                )
        if poll_interval is not Undefined and poll_interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {poll_interval}")
        self._default_timeout = default_timeout
        self._poll_interval = poll_interval
        self._scheduler = scheduler
        self._tokens = []

    def __enter__(self):
        for var, value in (
            (default_timeout, self._default_timeout),
            (poll_interval, self._poll_interval),
            (scheduler, self._scheduler),
        ):
            if value is not Undefined:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, *_):
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)

    @classmethod
    def get_current(cls) -> RuntimeContext:
        """Get the current runtime context.

        :returns:
            RuntimeContext with current context variable values.
        """
        return cls(
            default_timeout=default_timeout.get(),
            poll_interval=poll_interval.get(),
            scheduler=scheduler.get(),
        )

    @property
    def default_timeout(self) -> float | None:
        if self._default_timeout is Undefined:
            return default_timeout.get()
        return self._default_timeout

    @property
    def poll_interval(self) -> float:
        if self._poll_interval is Undefined:
            return poll_interval.get()
        return self._poll_interval

    @property
    def scheduler(self) -> Scheduler | None:
        if self._scheduler is Undefined:
            return scheduler.get()
        return self._scheduler
