"""Exception hierarchy for vmwarden.

All exceptions inherit from WardenError base class.

Hierarchy:
    WardenError (base)
    ├── QmpError                       ← anything on the QMP socket
    │   ├── QmpConnectionError         ← dial / transport failure
    │   │   ├── QmpSocketNotFoundError ← socket path does not exist
    │   │   ├── QmpPermissionError     ← connect() denied
    │   │   └── QmpConnectionClosedError ← EOF, broken pipe, reset
    │   ├── QmpProtocolError           ← malformed or unknown message
    │   ├── QmpCommandError            ← server answered with {"error": ...}
    │   ├── QmpNotConnectedError       ← command sent while disconnected
    │   └── QmpCancelledError          ← deadline expired
    ├── PidFileError                   ← PID file unreadable
    │   ├── InvalidPidError            ← non-numeric content
    │   └── PidOutOfRangeError         ← outside (0, 2**23]
    ├── KillFailedError                ← SIGKILL could not be delivered
    └── RuntimeCleanupError            ← runtime artifact removal failed
"""

from __future__ import annotations

from typing import Any


class WardenError(Exception):
    """Base exception for all vmwarden errors with structured context.

    Attributes:
        message: Human-readable error message
        context: Dictionary of structured error context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


# =============================================================================
# QMP Errors
# =============================================================================


class QmpError(WardenError):
    """Base for errors raised by the QMP client."""


class QmpConnectionError(QmpError):
    """Connecting to or talking over the QMP socket failed.

    The client is always disconnected after this error.
    """


class QmpSocketNotFoundError(QmpConnectionError):
    """QMP socket path does not exist (QEMU most likely not running)."""


class QmpPermissionError(QmpConnectionError):
    """Caller lacks permission to connect to the QMP socket."""


class QmpConnectionClosedError(QmpConnectionError):
    """Peer closed the connection (EOF, broken pipe or connection reset).

    QEMU closes its QMP socket when the process exits, so during a
    shutdown this is the success signal rather than a failure.
    """


class QmpProtocolError(QmpError):
    """Server sent something that is not a valid QMP message.

    Raised for undecodable JSON, non-object lines, a malformed greeting,
    or a message that is neither a response nor an event.
    """


class QmpCommandError(QmpError):
    """Server rejected a command with an error response.

    Attributes:
        command: Name of the command that failed
        error_class: QMP error class (e.g. "GenericError", "CommandNotFound")
        desc: Human-readable description from QEMU
    """

    def __init__(
        self,
        message: str,
        command: str,
        error_class: str,
        desc: str,
        context: dict[str, Any] | None = None,
    ):
        ctx = context or {}
        ctx.update({"command": command, "error_class": error_class, "desc": desc})
        super().__init__(message, ctx)
        self.command = command
        self.error_class = error_class
        self.desc = desc


class QmpNotConnectedError(QmpError):
    """Operation requires a live QMP connection but the client is disconnected."""


class QmpCancelledError(QmpError):
    """Deadline expired during a QMP operation.

    The connection is closed before this is raised; the stream position
    is unknown once a read has been interrupted.
    """


# =============================================================================
# Process / PID file Errors
# =============================================================================


class PidFileError(WardenError):
    """PID file exists but could not be read."""


class InvalidPidError(PidFileError):
    """PID file content is not a decimal integer."""


class PidOutOfRangeError(PidFileError):
    """PID file holds an integer outside (0, 2**23].

    Guards against corrupt files turning into nonsensical signal targets
    (0 and negative values address process groups).
    """


class KillFailedError(WardenError):
    """SIGKILL could not be delivered to the VM process.

    Attributes:
        pid: Target process ID
    """

    def __init__(self, message: str, pid: int, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx["pid"] = pid
        super().__init__(message, ctx)
        self.pid = pid


class RuntimeCleanupError(WardenError):
    """A runtime artifact (PID file, socket, serial log) could not be removed.

    Attributes:
        path: The file that could not be removed
    """

    def __init__(self, message: str, path: str, context: dict[str, Any] | None = None):
        ctx = context or {}
        ctx["path"] = path
        super().__init__(message, ctx)
        self.path = path
