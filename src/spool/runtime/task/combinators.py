"""Combinators composing the outcomes of several tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable
from typing import TypeVar

from spool.runtime.context import RuntimeContext
from spool.runtime.task.scheduler import Scheduler
from spool.runtime.task.task import Task
from spool.runtime.task.task import TaskState
from spool.runtime.task.task import _running_loop

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _collect(tasks: Iterable[Task[T]]) -> list[Task[T]]:
    tasks = list(tasks)
    for task in tasks:
        if not isinstance(task, Task):
            raise TypeError(f"Expected a Task, got {task!r}")
    return tasks


# public
async def wait_all(tasks: Iterable[Task[T]]) -> list[T]:
    """
    Run tasks concurrently and collect their results.

    Every task is started up front, in input order, and awaited
    concurrently. The first failure to occur is raised immediately without
    waiting for the remaining tasks, which keep running; cancel them
    explicitly if their work is no longer wanted.

    :param tasks:
        The tasks to run.
    :returns:
        Results aligned with the input: position ``i`` holds the result of
        ``tasks[i]``.
    :raises Exception:
        The error of the first task to fail. If several failures are
        observed at once, the one earliest in the input wins.
    """
    tasks = _collect(tasks)
    if not tasks:
        return []
    for task in tasks:
        task.start()
    waiters = [asyncio.ensure_future(task.wait()) for task in tasks]
    try:
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_EXCEPTION)
        failures = [waiter.exception() for waiter in waiters if waiter in done]
        for failure in failures:
            if failure is not None:
                raise failure
        return [waiter.result() for waiter in waiters]
    finally:
        for waiter in waiters:
            if not waiter.done():
                waiter.cancel()


# public
async def race(tasks: Iterable[Task[T]], *, scheduler: Scheduler | None = None) -> T:
    """
    Run tasks concurrently and settle with whichever settles first.

    Tasks that have not started are enqueued on the scheduler at their own
    priority and started through it, highest priority first. Other work
    pending on the scheduler is not started. As soon as one task reaches a
    terminal state, every other task known to the scheduler, and every other
    input task, is cancelled.

    :param tasks:
        The competing tasks.
    :param scheduler:
        Scheduler to run the tasks through. Defaults to
        :attr:`RuntimeContext.scheduler`, or a fresh scheduler when the
        context has none.
    :returns:
        The result of the first task to settle.
    :raises Exception:
        The error of the first task to settle, if it failed.
    :raises ValueError:
        If no tasks are given.
    """
    tasks = _collect(tasks)
    if not tasks:
        raise ValueError("race() requires at least one task")
    if scheduler is None:
        scheduler = RuntimeContext.get_current().scheduler
    if scheduler is None:
        scheduler = Scheduler()

    winner = next((task for task in tasks if task.done()), None)
    if winner is None:
        loop = asyncio.get_running_loop()
        first: asyncio.Future[Task[T]] = loop.create_future()

        def declare(task: Task[T]):
            def listener(_=None):
                if _running_loop() is loop:
                    _resolve(first, task)
                else:
                    loop.call_soon_threadsafe(_resolve, first, task)

            return listener

        for task in tasks:
            task.finally_(declare(task))
            if task.state is TaskState.CREATED and task.scheduler is None:
                scheduler.add_task(task, task.priority)
        scheduler.start_tasks(tasks)
        for task in tasks:
            task.start()

        # Waiters enforce each task's timeout while the race is on.
        waiters = [asyncio.ensure_future(task.wait()) for task in tasks]
        try:
            winner = await first
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    logger.debug(f"{winner!r} won the race")
    scheduler.cancel_all_other_tasks(winner)
    for task in tasks:
        if task is not winner:
            task.cancel()
    return await winner.wait()


def _resolve(future: asyncio.Future, task: Task) -> None:
    if not future.done():
        future.set_result(task)
