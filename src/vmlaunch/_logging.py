"""Logging setup for vmlaunch.

The library only creates loggers under "vmlaunch" and never configures
output itself: a NullHandler keeps it quiet inside applications.  The CLI
calls configure_logging(), which echoes records to stderr through click from
a listener thread, so a stalled terminal never holds up a launch or probe.

VMLAUNCH_LOG_LEVEL (DEBUG, INFO, WARNING, ...) sets the initial level.

CLI output format:
    10:02:54 WARNING vmlaunch.host_info: Kernel version unavailable
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME = "vmlaunch"

_LEVEL_COLORS = {
    logging.DEBUG: "bright_black",
    logging.INFO: "cyan",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "red",
}

_MAX_PENDING_RECORDS = 1024

_library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
_library_logger.addHandler(logging.NullHandler())

_initial_level = logging.getLevelNamesMapping().get(os.environ.get("VMLAUNCH_LOG_LEVEL", "").strip().upper())
if _initial_level:
    _library_logger.setLevel(_initial_level)


class _StderrEcho(logging.Handler):
    """Echo formatted records to stderr, colored by level.

    click drops the colors when stderr is not a terminal.
    """

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.secho(self.format(record), fg=_LEVEL_COLORS.get(record.levelno), err=True)
        except BlockingIOError:
            pass  # stderr would block; drop the line
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _BackgroundHandler(logging.handlers.QueueHandler):
    """Hand records to a listener thread; drop them when the queue is full."""

    def __init__(self) -> None:
        super().__init__(queue.Queue(_MAX_PENDING_RECORDS))
        self.listener = logging.handlers.QueueListener(self.queue, _StderrEcho())
        self.listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: the listener formats the record itself
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self.listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a vmlaunch module; pass `__name__`."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None, quiet: bool = False) -> None:
    """Send vmlaunch logs to stderr.  For CLI entry points only.

    Safe to call more than once; the stderr handler is installed once.

    Args:
        level: New level for all vmlaunch loggers (None keeps the current one)
        quiet: Only show errors; wins over `level`
    """
    if not any(isinstance(h, _BackgroundHandler) for h in _library_logger.handlers):
        _library_logger.addHandler(_BackgroundHandler())

    if quiet:
        level = logging.ERROR
    if level is not None:
        _library_logger.setLevel(level)
