from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import traceback
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from time import monotonic
from typing import TYPE_CHECKING
from typing import Any
from typing import Generator
from typing import Generic
from typing import Iterable
from typing import TypeVar
from typing import cast
from uuid import UUID
from uuid import uuid4

from spool.runtime.context import RuntimeContext
from spool.runtime.event import EventEmitter
from spool.runtime.event import Listener
from spool.runtime.typing import Undefined
from spool.runtime.typing import UndefinedType
from spool.runtime.typing import Work

if TYPE_CHECKING:
    from spool.runtime.task.scheduler import Scheduler

logger = logging.getLogger(__name__)

T = TypeVar("T")


# public
class TaskState(Enum):
    """
    Lifecycle states of a :class:`Task`.

    Transitions are monotonic: ``CREATED -> RUNNING -> terminal``, or
    ``CREATED -> CANCELLED``. Once a task is in a terminal state it never
    leaves it.
    """

    CREATED = "created"
    RUNNING = "running"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed-out"

    @property
    def terminal(self) -> bool:
        return self not in (TaskState.CREATED, TaskState.RUNNING)


# public
class TaskError(Exception):
    """Base class for errors synthesized by the spool runtime."""


# public
class TaskTimeoutError(TaskError, TimeoutError):
    """Raised when a task exceeds its timeout before settling.

    Stored on the task like any other failure and delivered to its
    "reject" listeners.
    """


# public
class TaskCancelledError(TaskError):
    """Raised when awaiting a cancelled task.

    Also raised into the work function at its next cooperative suspension
    point once cancellation has been requested. Calling
    :meth:`Task.cancel` itself never raises.
    """


# public
@dataclass
class TaskException:
    """
    Formatted snapshot of the exception a task failed with.

    :param type:
        Qualified name of the exception class.
    :param traceback:
        List of formatted traceback lines from the exception.
    """

    type: str
    traceback: list[str]

    @classmethod
    def from_exception(cls, exception: BaseException) -> TaskException:
        return cls(
            type(exception).__qualname__,
            traceback=[
                y for x in traceback.format_exception(exception) for y in x.split("\n")
            ],
        )


_current_task: ContextVar[Task | None] = ContextVar("_current_task", default=None)


# public
def current_task() -> Task | None:
    """
    Get the task whose work is currently executing, if any.

    :returns:
        The current task or None if called outside of a task's work.
    """
    return _current_task.get()


# public
class Task(EventEmitter, Generic[T]):
    """
    A single deferred unit of work with a lifecycle, a result or error slot
    and its own ordered listener table.

    The work function receives the task itself, which it can use to report
    progress, reach cooperative suspension points and read its timeout
    budget. Work runs at most once, in its own asyncio task, when the task
    is started directly, awaited, or started by a :class:`Scheduler`.

    **Example Usage**::

        async def download(task):
            for chunk in range(10):
                await task.sleep(0.1)
                task.progress(chunk * 10)
            return "done"


        task = (
            Task(download)
            .timeout(5)
            .on_progress(lambda percent: print(f"{percent}%"))
            .then(print, lambda error: print(f"failed: {error}"))
        )
        result = await task

    :param work:
        Callable taking the task and returning a result or an awaitable.
    :param timeout:
        Timeout in seconds measured from the moment the task starts.
        Defaults to :attr:`RuntimeContext.default_timeout`.
    :param priority:
        Priority used when the task is enqueued on a scheduler. Higher runs
        first.
    :param name:
        Descriptive tag used in logs. Defaults to the work function's
        qualified name.
    """

    id: UUID
    name: str
    work: Work[T]
    created_at: float
    started_at: float | None
    timeout_duration: float | None
    cancel_requested: bool
    exception_info: TaskException | None
    scheduler: Scheduler | None
    """The scheduler this task is pending in, if any."""

    def __init__(
        self,
        work: Work[T],
        /,
        *,
        timeout: float | None = None,
        priority: int = 0,
        name: str | None = None,
    ) -> None:
        if not callable(work):
            raise TypeError(f"Work must be callable, got {work!r}")
        super().__init__()
        self.id = uuid4()
        self.name = name or getattr(work, "__qualname__", repr(work))
        self.work = work
        self.created_at = monotonic()
        self.started_at = None
        self.timeout_duration = None
        self.cancel_requested = False
        self.exception_info = None
        self.scheduler = None
        self._priority = priority
        self._state = TaskState.CREATED
        self._result: T | UndefinedType = Undefined
        self._error: BaseException | None = None
        self._cancellation: TaskCancelledError | None = None
        self._lock = threading.RLock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._settled: asyncio.Event | None = None
        self._execution: asyncio.Task | None = None
        if timeout is None:
            timeout = RuntimeContext.get_current().default_timeout
        if timeout is not None:
            self.timeout(timeout)
        logger.debug(f"Created {self!r}")

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}"
            f"({self.name!r}, id={self.id}, state={self._state.name})"
        )

    def __await__(self) -> Generator[Any, None, T]:
        return self.wait().__await__()

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def priority(self) -> int:
        return self._priority

    @priority.setter
    def priority(self, priority: int) -> None:
        if self.scheduler is not None:
            raise asyncio.InvalidStateError(
                f"Cannot change the priority of {self!r} while it is enqueued"
            )
        self._priority = priority

    @property
    def result(self) -> T:
        """
        The value returned by the work function.

        :raises asyncio.InvalidStateError:
            If the task is not fulfilled.
        """
        with self._lock:
            if self._state is not TaskState.FULFILLED:
                raise asyncio.InvalidStateError(f"{self!r} is not fulfilled")
            return cast(T, self._result)

    @property
    def error(self) -> BaseException | None:
        """The stored failure of a rejected or timed out task, else None."""
        return self._error

    @property
    def elapsed(self) -> float | None:
        """Seconds since the task started, or None if it has not."""
        if self.started_at is None:
            return None
        return monotonic() - self.started_at

    @property
    def remaining(self) -> float | None:
        """Seconds left before the timeout elapses, or None without one."""
        if self.timeout_duration is None or (elapsed := self.elapsed) is None:
            return None
        return self.timeout_duration - elapsed

    def done(self) -> bool:
        return self._state.terminal

    def cancelled(self) -> bool:
        return self._state is TaskState.CANCELLED

    def start(self) -> None:
        """
        Begin executing the work function on the running event loop.

        Does nothing unless the task is in the ``CREATED`` state, so the work
        function runs at most once.

        :raises RuntimeError:
            If no event loop is running in the current thread.
        """
        with self._lock:
            if self._state is not TaskState.CREATED:
                return
            loop = asyncio.get_running_loop()
            self._state = TaskState.RUNNING
            self.started_at = monotonic()
            self._loop = loop
            self._settled = asyncio.Event()
            self._execution = loop.create_task(self._run(), name=f"spool:{self.name}")
        logger.debug(f"Started {self!r}")

    async def wait(self) -> T:
        """
        Start the task if necessary and wait for it to settle.

        The timeout, if any, is enforced while waiting: once it elapses the
        task is forced into ``TIMED_OUT``. Waiting again on a settled task
        returns or raises the same outcome without running the work again.
        Cancelling the waiting coroutine does not cancel the task.

        :returns:
            The result of the work function.
        :raises TaskTimeoutError:
            If the task timed out.
        :raises TaskCancelledError:
            If the task was cancelled.
        :raises Exception:
            Whatever the work function raised.
        """
        self.start()
        if not self.done():
            assert self._settled is not None
            remaining = self.remaining
            if remaining is not None and remaining <= 0:
                self._time_out()
            else:
                try:
                    await asyncio.wait_for(
                        asyncio.shield(self._settled.wait()), remaining
                    )
                except asyncio.TimeoutError:
                    self._time_out()
        return self._outcome()

    def then(
        self, on_fulfilled: Listener, on_rejected: Listener | None = None
    ) -> Task[T]:
        self.on("resolve", on_fulfilled)
        if on_rejected is not None:
            self.on("reject", on_rejected)
        return self

    def catch(self, on_rejected: Listener) -> Task[T]:
        return self.on("reject", on_rejected)

    def finally_(self, callback: Listener) -> Task[T]:
        return self.on("finally", callback)

    def on_progress(self, callback: Listener) -> Task[T]:
        return self.on("progress", callback)

    def progress(self, data: Any) -> None:
        """Report progress to the task's "progress" listeners."""
        self.emit("progress", data)

    def timeout(self, duration: float) -> Task[T]:
        """
        Set the timeout for this task.

        Takes effect for every subsequent check, including checks made while
        the task is already running.

        :param duration:
            Timeout in seconds, measured from the moment the task starts.
        :returns:
            This task.
        :raises ValueError:
            If the duration is not positive.
        """
        if duration <= 0:
            raise ValueError(f"Timeout must be positive, got {duration}")
        self.timeout_duration = duration
        return self

    def cancel(self) -> None:
        """
        Request cancellation of the task.

        A task that has not settled moves to ``CANCELLED`` immediately and
        emits "cancel" followed by "finally". Running work notices at its
        next cooperative suspension point. Cancelling a settled task does
        nothing.
        """
        self._settle(TaskState.CANCELLED)

    def set_priority(
        self, priority: int, *, scheduler: Scheduler | None = None
    ) -> Task[T]:
        """
        Record the priority and enqueue the task for a scheduled start.

        :param priority:
            The priority level. Higher runs first.
        :param scheduler:
            The scheduler to enqueue on. Defaults to
            :attr:`RuntimeContext.scheduler`.
        :returns:
            This task.
        :raises asyncio.InvalidStateError:
            If the task has already started, settled or been enqueued.
        :raises RuntimeError:
            If no scheduler is available.
        """
        if self._state is not TaskState.CREATED:
            raise asyncio.InvalidStateError(f"Cannot schedule {self!r}")
        self.priority = priority
        return self.schedule(scheduler)

    def schedule(self, scheduler: Scheduler | None = None) -> Task[T]:
        """
        Enqueue the task at its current priority.

        :param scheduler:
            The scheduler to enqueue on. Defaults to
            :attr:`RuntimeContext.scheduler`.
        :returns:
            This task.
        """
        if scheduler is None:
            scheduler = RuntimeContext.get_current().scheduler
        if scheduler is None:
            raise RuntimeError(
                "No scheduler available, pass one explicitly or set one with "
                "RuntimeContext"
            )
        scheduler.add_task(self, self.priority)
        return self

    async def checkpoint(self) -> None:
        """
        Cooperative suspension point for the work function.

        Yields to the event loop, then checks the task's timeout and
        cancellation flag.

        :raises TaskTimeoutError:
            If the timeout has elapsed.
        :raises TaskCancelledError:
            If cancellation has been requested.
        """
        await asyncio.sleep(0)
        self._check()

    async def sleep(self, delay: float) -> None:
        """
        Suspend the work function for ``delay`` seconds.

        The wait is split into slices no longer than
        :attr:`RuntimeContext.poll_interval` so that cancellation and
        timeouts interrupt it promptly.

        :raises TaskTimeoutError:
            If the timeout elapses while sleeping.
        :raises TaskCancelledError:
            If cancellation is requested while sleeping.
        """
        if delay <= 0:
            return await self.checkpoint()
        interval = RuntimeContext.get_current().poll_interval
        deadline = monotonic() + delay
        self._check()
        while (left := deadline - monotonic()) > 0:
            await asyncio.sleep(min(left, interval))
            self._check()

    @staticmethod
    async def all(tasks: Iterable[Task[T]]) -> list[T]:
        """See :func:`spool.wait_all`."""
        from spool.runtime.task.combinators import wait_all

        return await wait_all(tasks)

    @staticmethod
    async def race(
        tasks: Iterable[Task[T]], *, scheduler: Scheduler | None = None
    ) -> T:
        """See :func:`spool.race`."""
        from spool.runtime.task.combinators import race

        return await race(tasks, scheduler=scheduler)

    async def _run(self) -> None:
        token = _current_task.set(self)
        try:
            result = self.work(self)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            self._settle(TaskState.CANCELLED)
            raise
        except Exception as e:
            if not self._settle(TaskState.REJECTED, error=e):
                logger.debug(
                    f"Discarding {type(e).__qualname__} raised by settled {self!r}"
                )
        else:
            remaining = self.remaining
            if remaining is not None and remaining <= 0:
                self._time_out()
            elif not self._settle(TaskState.FULFILLED, result=result):
                logger.debug(f"Discarding result of settled {self!r}")
        finally:
            _current_task.reset(token)

    def _check(self) -> None:
        remaining = self.remaining
        if remaining is not None and remaining <= 0:
            self._time_out()
        with self._lock:
            state = self._state
        if state is TaskState.TIMED_OUT:
            assert self._error is not None
            raise self._error
        if state is TaskState.CANCELLED or self.cancel_requested:
            raise self._cancellation or TaskCancelledError(f"{self!r} was cancelled")

    def _time_out(self) -> None:
        self._settle(
            TaskState.TIMED_OUT,
            error=TaskTimeoutError(
                f"Task {self.name!r} timed out after {self.timeout_duration}s"
            ),
        )

    def _outcome(self) -> T:
        with self._lock:
            state = self._state
        if state is TaskState.FULFILLED:
            return cast(T, self._result)
        elif state is TaskState.CANCELLED:
            assert self._cancellation is not None
            raise self._cancellation
        elif state in (TaskState.REJECTED, TaskState.TIMED_OUT):
            assert self._error is not None
            raise self._error
        else:
            raise asyncio.InvalidStateError(f"{self!r} has not settled")

    def _settle(
        self,
        state: TaskState,
        *,
        result: T | UndefinedType = Undefined,
        error: BaseException | None = None,
    ) -> bool:
        with self._lock:
            if self._state.terminal:
                return False
            self._state = state
            if state is TaskState.FULFILLED:
                self._result = result
            elif state is TaskState.CANCELLED:
                self.cancel_requested = True
                self._cancellation = TaskCancelledError(
                    f"Task {self.name!r} was cancelled"
                )
            else:
                assert error is not None
                if state is TaskState.TIMED_OUT:
                    self.cancel_requested = True
                self._error = error
                self.exception_info = TaskException.from_exception(error)
        logger.debug(f"Settled {self!r}")

        if state is TaskState.FULFILLED:
            self.emit("resolve", result)
        elif state is TaskState.CANCELLED:
            self.emit("cancel")
        else:
            self.emit("reject", error)
        self.emit("finally")
        self._notify()
        return True

    def _notify(self) -> None:
        if self._settled is None or self._loop is None:
            return
        if _running_loop() is self._loop:
            self._settled.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._settled.set)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None
