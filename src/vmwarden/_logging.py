"""Logging setup for vmwarden.

Modules log through get_logger(__name__) and attach structured context
with ``extra=`` (vm, pid, socket, ...). Nothing is printed unless the
embedding application configures logging or the CLI calls
configure_logging(); the "vmwarden" logger only carries a NullHandler.

VMWARDEN_LOG_LEVEL sets the initial level of the "vmwarden" logger.

CLI line format (context sorted by key):
    WARNING [2026-02-25 10:02:54] vmwarden.process - Sending SIGKILL pid=4242

CLI records go through a bounded queue to a listener thread that writes
with click.echo(err=True); a stalled stderr drops records instead of
blocking the event loop that drives the QMP socket.
"""

import logging
import logging.handlers
import os
import queue
from typing import Any

import click

LIBRARY_LOGGER_NAME: str = "vmwarden"
LOG_LEVEL_ENV_VAR: str = "VMWARDEN_LOG_LEVEL"

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 1024

# Attributes every LogRecord has; anything else arrived via extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_LEVEL_COLORS = {logging.WARNING: "yellow", logging.ERROR: "red", logging.CRITICAL: "red"}


def _level_from_env() -> int | None:
    name = os.environ.get(LOG_LEVEL_ENV_VAR, "").strip().upper()
    # NOTSET (0) and unknown names leave the level alone
    return logging.getLevelNamesMapping().get(name) or None


_library_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
_library_logger.addHandler(logging.NullHandler())
if (_env_level := _level_from_env()) is not None:
    _library_logger.setLevel(_env_level)


class ContextFormatter(logging.Formatter):
    """Formatter that appends ``extra=`` fields as key=value pairs."""

    def __init__(self) -> None:
        super().__init__(fmt=_FMT, datefmt=_DATEFMT)

    def formatMessage(self, record: logging.LogRecord) -> str:  # noqa: N802
        line = super().formatMessage(record)
        context: dict[str, Any] = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if not context:
            return line
        return line + " " + " ".join(f"{key}={value}" for key, value in sorted(context.items()))


class _StderrHandler(logging.Handler):
    """Writes to stderr via click.echo; warnings and errors are colored."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(ContextFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            color = _LEVEL_COLORS.get(record.levelno)
            text = self.format(record)
            click.echo(click.style(text, fg=color) if color else click.style(text, dim=True), err=True)
        except BlockingIOError:
            pass  # stderr full, drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """QueueHandler feeding a _StderrHandler on a listener thread.

    Never blocks the caller: when the queue is full the record is
    counted in `dropped` and discarded.
    """

    def __init__(self, capacity: int = _QUEUE_CAPACITY) -> None:
        super().__init__(queue.Queue(maxsize=capacity))
        self.dropped = 0
        self._listener: logging.handlers.QueueListener | None = logging.handlers.QueueListener(
            self.queue, _StderrHandler(), respect_handler_level=False
        )
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: the listener formats the record as-is
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1

    def close(self) -> None:
        # Called by logging.shutdown() at exit; stop() drains queued records first
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Logger under the "vmwarden" hierarchy for a module name."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send vmwarden log records to stderr (CLI entry point).

    Installs the queue handler once; calling again only changes the
    level. Handlers installed by the embedding application are left in
    place.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). None keeps the
            current level (VMWARDEN_LOG_LEVEL, if set).
        quiet: Set level to ERROR. Takes precedence over level.
    """
    if not any(isinstance(h, _DroppingQueueHandler) for h in _library_logger.handlers):
        _library_logger.addHandler(_DroppingQueueHandler())

    if quiet:
        _library_logger.setLevel(logging.ERROR)
    elif level is not None:
        _library_logger.setLevel(level)
