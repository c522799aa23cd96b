"""Shared fixtures for task subpackage tests."""

from typing import Any
from typing import Callable

import pytest

from spool.runtime.task import Scheduler
from spool.runtime.task import Task


@pytest.fixture
def scheduler() -> Scheduler:
    """Provides a fresh, empty scheduler."""
    return Scheduler()


@pytest.fixture
def returning() -> Callable[..., Task]:
    """Factory for tasks whose work sleeps and then returns a value.

    :returns:
        A callable ``(value, delay=0.0, **kwargs) -> Task``.
    """

    def factory(value: Any, delay: float = 0.0, **kwargs) -> Task:
        async def work(task: Task):
            await task.sleep(delay)
            return value

        return Task(work, **kwargs)

    return factory


@pytest.fixture
def failing() -> Callable[..., Task]:
    """Factory for tasks whose work sleeps and then raises.

    :returns:
        A callable ``(error, delay=0.0, **kwargs) -> Task``.
    """

    def factory(error: BaseException, delay: float = 0.0, **kwargs) -> Task:
        async def work(task: Task):
            await task.sleep(delay)
            raise error

        return Task(work, **kwargs)

    return factory


@pytest.fixture
def blocking() -> Callable[..., Task]:
    """Factory for tasks whose work never finishes on its own.

    The work sleeps cooperatively for an hour, so in practice it only
    settles through cancellation or a timeout.
    """

    def factory(**kwargs) -> Task:
        async def work(task: Task):
            await task.sleep(3600)

        return Task(work, **kwargs)

    return factory

