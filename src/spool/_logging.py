import logging
import os

from spool.runtime.task.task import current_task


def label(text: str) -> str:
    """
    Render a log field label in grey italics.

    :param text: The label text.
    :return: The label wrapped in ANSI escape codes.
    """
    return f"\x1b[3;90m{text}\x1b[0m"


class SpoolLogFilter(logging.Filter):
    """
    Annotates log records with the spool task being executed and the
    source location of the call.

    ``record.task`` holds the name of the task whose work is running, or
    ``-`` outside of task work. ``record.ref`` holds ``path:lineno``, with
    the path relative to the working directory when the source lives
    beneath it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        task = current_task()
        record.task = task.name if task is not None else "-"
        cwd = os.getcwd()
        if record.pathname.startswith(cwd):
            path = os.path.relpath(record.pathname, cwd)
        else:
            path = f".../{os.path.basename(record.pathname)}"
        record.ref = f"{path}:{record.lineno}"
        return True


__log_format__: str = (
    f"{label('pid:')}%(process)-8d "
    f"{label('thread:')}%(threadName)-20s "
    f"{label('task:')}%(task)-24s "
    "%(levelname)8s %(message)-60s "
    f"{label('%(ref)s')}"
)
"""
The default log format for the ``spool`` logger: process id, thread, the
running spool task, level, message and source reference.
"""

__log_level__: int = logging.WARNING
"""
The default level of the ``spool`` logger. Lifecycle transitions are
logged at DEBUG; lower the level to trace them.
"""

handler: logging.StreamHandler = logging.StreamHandler()
handler.setFormatter(logging.Formatter(__log_format__))
handler.addFilter(SpoolLogFilter())

logger: logging.Logger = logging.getLogger("spool")
logger.addHandler(handler)
logger.setLevel(__log_level__)
