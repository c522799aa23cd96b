"""Deferred tasks, their scheduler and combinators."""

from spool.runtime.task.combinators import race
from spool.runtime.task.combinators import wait_all
from spool.runtime.task.scheduler import Scheduler
from spool.runtime.task.task import Task
from spool.runtime.task.task import TaskCancelledError
from spool.runtime.task.task import TaskError
from spool.runtime.task.task import TaskException
from spool.runtime.task.task import TaskState
from spool.runtime.task.task import TaskTimeoutError
from spool.runtime.task.task import current_task

__all__ = [
    "Scheduler",
    "Task",
    "TaskCancelledError",
    "TaskError",
    "TaskException",
    "TaskState",
    "TaskTimeoutError",
    "current_task",
    "race",
    "wait_all",
]
