from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING
from typing import Awaitable
from typing import Callable
from typing import Final
from typing import TypeAlias
from typing import TypeVar
from typing import final

if TYPE_CHECKING:
    from spool.runtime.task.task import Task

T = TypeVar("T")


@final
class UndefinedType(Enum):
    Undefined = "Undefined"


Undefined: Final = UndefinedType.Undefined


# public
Work: TypeAlias = Callable[["Task[T]"], "Awaitable[T] | T"]
"""
A unit of work executed by a :class:`~spool.Task`. Receives the owning task
as its only argument. Coroutine functions run cooperatively; plain functions
run inline on the event loop.
"""

