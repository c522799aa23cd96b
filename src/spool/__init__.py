from importlib.metadata import PackageNotFoundError
from importlib.metadata import version

from tblib import pickling_support

from spool._logging import __log_format__
from spool._logging import __log_level__
from spool.runtime.context import RuntimeContext
from spool.runtime.event import EventEmitter
from spool.runtime.event import EventLike
from spool.runtime.event import Listener
from spool.runtime.event import TaskEventType
from spool.runtime.task import Scheduler
from spool.runtime.task import Task
from spool.runtime.task import TaskCancelledError
from spool.runtime.task import TaskError
from spool.runtime.task import TaskException
from spool.runtime.task import TaskState
from spool.runtime.task import TaskTimeoutError
from spool.runtime.task import current_task
from spool.runtime.task import race
from spool.runtime.task import wait_all
from spool.runtime.typing import Work

# Failed tasks keep their errors; make them picklable with tracebacks intact.
pickling_support.install()

try:
    __version__ = version("spool")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    # Context
    "RuntimeContext",
    # Events
    "EventEmitter",
    "EventLike",
    "Listener",
    "TaskEventType",
    # Tasks
    "Task",
    "TaskCancelledError",
    "TaskError",
    "TaskException",
    "TaskState",
    "TaskTimeoutError",
    "current_task",
    # Scheduling
    "Scheduler",
    "race",
    "wait_all",
    # Typing
    "Work",
    # Logging
    "__log_format__",
    "__log_level__",
]

for symbol in __all__:
    attribute = globals().get(symbol)
    try:
        if attribute and "spool" in attribute.__module__.split("."):
            # Set the module to reflect imports of the symbol
            attribute.__module__ = __name__
    except AttributeError:
        continue
