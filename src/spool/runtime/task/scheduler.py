from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import threading
from dataclasses import dataclass
from dataclasses import field
from functools import partial
from typing import Final
from typing import Iterable
from uuid import UUID

from spool.runtime.task.task import Task
from spool.runtime.task.task import TaskState

logger = logging.getLogger(__name__)


@dataclass(order=True)
class _Entry:
    key: tuple[int, int]
    task: Task = field(compare=False)
    priority: int = field(compare=False)


# public
class Scheduler:
    """Priority queue of tasks awaiting a scheduled start.

    Tasks are started by :meth:`run_tasks` in non-increasing priority
    order; tasks of equal priority start in the order they were added. The
    scheduler holds non-owning references: a task leaves the pending queue
    when it is started, removed, cancelled or settles by other means, and
    leaves the running set once it settles.

    Schedulers are plain values. Create as many as needed and pass them
    explicitly, or make one the default for a block of code with
    :class:`RuntimeContext`.

    **Example Usage**::

        scheduler = Scheduler()
        low = Task(fetch_index).set_priority(1, scheduler=scheduler)
        high = Task(fetch_config).set_priority(5, scheduler=scheduler)
        scheduler.run_tasks()  # starts `high`, then `low`
    """

    _pending: Final[list[_Entry]]
    _running: Final[dict[UUID, Task]]
    _watched: Final[set[UUID]]

    def __init__(self) -> None:
        self._pending = []
        self._running = {}
        self._watched = set()
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, task: object) -> bool:
        with self._lock:
            return any(entry.task is task for entry in self._pending)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}"
            f"(pending={len(self._pending)}, running={len(self._running)})"
        )

    @property
    def pending(self) -> list[Task]:
        """Pending tasks in the order :meth:`run_tasks` would start them."""
        with self._lock:
            return [entry.task for entry in sorted(self._pending)]

    @property
    def running(self) -> list[Task]:
        """Tasks started by this scheduler that have not settled yet."""
        with self._lock:
            return list(self._running.values())

    def add_task(self, task: Task, priority: int = 0) -> None:
        """Enqueue a task for a scheduled start.

        :param task:
            The task to enqueue. Must not have started yet.
        :param priority:
            The priority level. Higher runs first.
        :raises asyncio.InvalidStateError:
            If the task has already started or settled.
        :raises ValueError:
            If the task is already pending on a scheduler.
        """
        if task.state is not TaskState.CREATED:
            raise asyncio.InvalidStateError(f"Cannot enqueue {task!r}")
        with self._lock:
            if task.scheduler is not None:
                raise ValueError(f"{task!r} is already pending on {task.scheduler!r}")
            task.priority = priority
            task.scheduler = self
            heapq.heappush(
                self._pending, _Entry((-priority, next(self._sequence)), task, priority)
            )
            watched = task.id in self._watched
            self._watched.add(task.id)
        if not watched:
            task.finally_(partial(self._forget, task))
        logger.debug(f"Enqueued {task!r} at priority {priority}")

    def remove(self, task: Task) -> bool:
        """Drop a pending task without cancelling it.

        :returns:
            True if the task was pending on this scheduler.
        """
        with self._lock:
            return self._discard(task)

    def run_tasks(self) -> None:
        """Start every pending task, highest priority first.

        Each task is started before the next one is dequeued. Started tasks
        run concurrently on the event loop.

        :raises RuntimeError:
            If no event loop is running in the current thread.
        """
        asyncio.get_running_loop()
        while True:
            with self._lock:
                if not self._pending:
                    break
                entry = heapq.heappop(self._pending)
                entry.task.scheduler = None
                self._running[entry.task.id] = entry.task
            self._start(entry)

    def start_tasks(self, tasks: Iterable[Task]) -> None:
        """Start only the given tasks, highest priority first.

        Given tasks pending on this scheduler are dequeued and tracked as
        running; any other pending task stays queued. Given tasks that are
        not pending here are left alone.

        :param tasks:
            The tasks to start.
        :raises RuntimeError:
            If no event loop is running in the current thread.
        """
        asyncio.get_running_loop()
        wanted = {task.id for task in tasks}
        with self._lock:
            entries = sorted(e for e in self._pending if e.task.id in wanted)
            self._pending[:] = [e for e in self._pending if e.task.id not in wanted]
            heapq.heapify(self._pending)
            for entry in entries:
                entry.task.scheduler = None
                self._running[entry.task.id] = entry.task
        for entry in entries:
            self._start(entry)

    def cancel_all_other_tasks(self, task: Task) -> None:
        """Cancel every pending and running task except the given one.

        :param task:
            The task to spare, typically the winner of a race.
        """
        with self._lock:
            others = [
                *(entry.task for entry in self._pending if entry.task is not task),
                *(other for other in self._running.values() if other is not task),
            ]
        logger.debug(f"Cancelling {len(others)} task(s) other than {task!r}")
        for other in others:
            other.cancel()

    def _start(self, entry: _Entry) -> None:
        logger.debug(f"Dequeued {entry.task!r} at priority {entry.priority}")
        entry.task.start()
        if entry.task.done():
            self._forget(entry.task)

    def _forget(self, task: Task, _=None) -> None:
        with self._lock:
            self._running.pop(task.id, None)
            if task.done():
                self._watched.discard(task.id)
            self._discard(task)

    def _discard(self, task: Task) -> bool:
        for index, entry in enumerate(self._pending):
            if entry.task is task:
                del self._pending[index]
                heapq.heapify(self._pending)
                task.scheduler = None
                return True
        return False
