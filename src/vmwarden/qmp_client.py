"""QMP (QEMU Machine Protocol) client.

Speaks line-delimited JSON over QEMU's QMP Unix socket: greeting,
capabilities negotiation, command/response exchange with event
buffering, and a shutdown helper that treats the socket closing as
proof that QEMU exited.

Usage:
    async with QmpClient(qmp_socket_path) as qmp:
        if await qmp.is_running():
            await qmp.shutdown(graceful_timeout=20.0)
        events = qmp.drain_events()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import TYPE_CHECKING, Any, Self

import aiofiles.os
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_delay, wait_fixed

from vmwarden import constants
from vmwarden._logging import get_logger
from vmwarden.exceptions import (
    QmpCancelledError,
    QmpConnectionClosedError,
    QmpConnectionError,
    QmpError,
    QmpNotConnectedError,
    QmpPermissionError,
    QmpProtocolError,
    QmpSocketNotFoundError,
)
from vmwarden.qmp_protocol import (
    QmpCommand,
    QmpEvent,
    QmpResponse,
    decode_line,
    encode_command,
    parse_greeting,
    parse_message,
)

if TYPE_CHECKING:
    from pathlib import Path

_logger = get_logger(__name__)

# Socket errors that mean the peer went away
_CLOSED_ERRORS = (BrokenPipeError, ConnectionResetError, ConnectionAbortedError)

# Floor for the per-command deadline inside a shutdown phase
_MIN_SHUTDOWN_COMMAND_TIMEOUT = 0.1


class QmpClient:
    """Single-connection QMP client.

    One asyncio lock serializes the write-command/read-response critical
    section, so concurrent callers are queued rather than rejected and
    each receives its own response. Events read while waiting for a
    response are appended to a buffer guarded by a separate lock and
    handed out by drain_events().

    Any transport failure, protocol violation, deadline expiry or task
    cancellation during an operation closes the socket; the client is
    then disconnected and may be connected again.

    Attributes:
        socket_path: Path to the QMP Unix socket
        connected: True between a successful handshake and close()
    """

    __slots__ = (
        "_connected",
        "_events",
        "_events_lock",
        "_io_lock",
        "_logger",
        "_read_limit",
        "_reader",
        "_socket_path",
        "_writer",
    )

    def __init__(
        self,
        socket_path: str | Path,
        *,
        logger: logging.Logger | None = None,
        read_limit: int = constants.QMP_READ_LIMIT,
    ) -> None:
        """Initialize QMP client.

        Args:
            socket_path: Path to QEMU QMP Unix socket.
            logger: Trace sink for protocol traffic. Defaults to the module logger.
            read_limit: StreamReader buffer limit (longest accepted line).
        """
        self._socket_path = str(socket_path)
        self._logger = logger or _logger
        self._read_limit = read_limit
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._connected = False
        self._io_lock = asyncio.Lock()
        self._events: list[QmpEvent] = []
        self._events_lock = threading.Lock()

    @property
    def socket_path(self) -> str:
        return self._socket_path

    @property
    def connected(self) -> bool:
        return self._connected

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, timeout: float | None = constants.QMP_CONNECT_TIMEOUT_SECONDS) -> None:
        """Connect to the QMP socket and complete the handshake.

        No-op when already connected.

        Args:
            timeout: Deadline in seconds for dial, greeting and capabilities
                negotiation, including time queued behind other callers.
                None waits indefinitely.

        Raises:
            QmpSocketNotFoundError: Socket path does not exist
            QmpPermissionError: connect() was denied
            QmpConnectionError: Any other dial or I/O failure
            QmpProtocolError: Greeting or capabilities reply is malformed
            QmpCommandError: Server rejected qmp_capabilities
            QmpCancelledError: Deadline expired
        """
        try:
            # Deadline covers waiting for the lock too
            async with asyncio.timeout(timeout):
                async with self._io_lock:
                    if self._connected:
                        return

                    if not await aiofiles.os.path.exists(self._socket_path):
                        msg = f"QMP socket at {self._socket_path} not found, is QEMU running?"
                        raise QmpSocketNotFoundError(msg, {"socket": self._socket_path})

                    try:
                        await self._open()
                        await self._handshake()
                    except (QmpError, asyncio.CancelledError):
                        await self._cleanup()
                        raise

                    self._connected = True
                    self._logger.debug("QMP connection established", extra={"socket": self._socket_path})
        except TimeoutError as e:
            msg = f"QMP connection timed out after {timeout}s"
            raise QmpCancelledError(msg, {"socket": self._socket_path}) from e

    async def close(self) -> None:
        """Close the QMP connection.

        Safe to call multiple times or if never connected.
        """
        async with self._io_lock:
            await self._cleanup()

    async def _open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.open_unix_connection(
                self._socket_path,
                limit=self._read_limit,
            )
        except FileNotFoundError as e:
            # Socket removed between the existence check and the dial
            msg = f"QMP socket at {self._socket_path} not found, is QEMU running?"
            raise QmpSocketNotFoundError(msg, {"socket": self._socket_path}) from e
        except PermissionError as e:
            msg = f"You lack permissions to talk over socket {self._socket_path}"
            raise QmpPermissionError(msg, {"socket": self._socket_path}) from e
        except OSError as e:
            msg = f"Failed to connect to QMP socket: {e}"
            raise QmpConnectionError(msg, {"socket": self._socket_path}) from e

    async def _handshake(self) -> None:
        """Consume the greeting and negotiate capabilities (must hold lock)."""
        line = await self._readline()
        greeting = parse_greeting(line)
        self._logger.debug(
            "QMP greeting received",
            extra={"version": greeting.qmp.version, "capabilities": greeting.qmp.capabilities},
        )

        response = await self._transact(QmpCommand(execute=constants.QMP_CAPABILITIES_COMMAND))
        response.raise_for_error(constants.QMP_CAPABILITIES_COMMAND)

    async def _cleanup(self) -> None:
        """Internal cleanup (must hold lock)."""
        if self._writer is not None:
            self._writer.close()
            with contextlib.suppress(TimeoutError, OSError):
                await asyncio.wait_for(self._writer.wait_closed(), timeout=constants.QMP_CLOSE_TIMEOUT_SECONDS)
        self._reader = None
        self._writer = None
        self._connected = False

    # ------------------------------------------------------------------
    # Wire I/O (all must hold lock)
    # ------------------------------------------------------------------

    async def _readline(self) -> bytes:
        if self._reader is None:
            raise QmpNotConnectedError("Not connected to QMP", {"socket": self._socket_path})
        try:
            line = await self._reader.readline()
        except _CLOSED_ERRORS as e:
            raise QmpConnectionClosedError(f"QMP connection lost: {e}", {"socket": self._socket_path}) from e
        except ValueError as e:
            # StreamReader.readline() reports limit overruns as ValueError
            msg = f"QMP message exceeds {self._read_limit} byte read limit"
            raise QmpProtocolError(msg, {"socket": self._socket_path}) from e
        except OSError as e:
            raise QmpConnectionError(f"Failed to read from QMP socket: {e}", {"socket": self._socket_path}) from e

        # readline() returns a partial line (or nothing) at EOF
        if not line.endswith(b"\n"):
            raise QmpConnectionClosedError("QMP connection closed by server", {"socket": self._socket_path})
        return line

    async def _write(self, command: QmpCommand) -> None:
        if self._writer is None:
            raise QmpNotConnectedError("Not connected to QMP", {"socket": self._socket_path})
        try:
            self._writer.write(encode_command(command))
            await self._writer.drain()
        except _CLOSED_ERRORS as e:
            raise QmpConnectionClosedError(f"QMP connection lost: {e}", {"socket": self._socket_path}) from e
        except OSError as e:
            raise QmpConnectionError(f"Failed to write to QMP socket: {e}", {"socket": self._socket_path}) from e

    async def _transact(self, command: QmpCommand) -> QmpResponse:
        """Send a command and read until its response, buffering events."""
        await self._write(command)
        self._logger.debug("QMP command: %s args=%s", command.execute, command.arguments)

        while True:
            message = parse_message(decode_line(await self._readline()))
            if isinstance(message, QmpEvent):
                self._logger.debug("QMP event: %s data=%s", message.event, message.data)
                with self._events_lock:
                    self._events.append(message)
                continue
            self._logger.debug("QMP response: %s -> %s", command.execute, message)
            return message

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send_command(self, command: QmpCommand, timeout: float | None = None) -> QmpResponse:
        """Send a command and wait for its response.

        The returned response may itself be error-shaped; that is a
        protocol-level answer, not a transport failure.

        Args:
            command: Command to send.
            timeout: Deadline in seconds, including time spent queued
                behind other callers. None waits indefinitely.

        Raises:
            QmpNotConnectedError: Client is disconnected
            QmpConnectionClosedError: Server closed the connection
            QmpConnectionError: Other I/O failure
            QmpProtocolError: Server sent an unrecognized message
            QmpCancelledError: Deadline expired
        """
        try:
            async with asyncio.timeout(timeout):
                async with self._io_lock:
                    if not self._connected:
                        raise QmpNotConnectedError("Not connected to QMP", {"socket": self._socket_path})
                    try:
                        return await self._transact(command)
                    except (QmpError, asyncio.CancelledError):
                        await self._cleanup()
                        raise
        except TimeoutError as e:
            msg = f"QMP command '{command.execute}' timed out after {timeout}s"
            raise QmpCancelledError(msg, {"socket": self._socket_path, "command": command.execute}) from e

    async def execute(
        self,
        command: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> QmpResponse:
        """Convenience wrapper around send_command()."""
        return await self.send_command(QmpCommand(execute=command, arguments=arguments), timeout=timeout)

    async def check_status(self, timeout: float | None = None) -> dict[str, Any]:
        """Query VM run state.

        Returns:
            The query-status payload, e.g. {"running": True, "status": "running", "singlestep": False}

        Raises:
            QmpCommandError: Server rejected query-status
            QmpProtocolError: Payload is not an object
            QmpError: Any failure from send_command()
        """
        response = await self.execute(constants.QMP_STATUS_COMMAND, timeout=timeout)
        response.raise_for_error(constants.QMP_STATUS_COMMAND)
        if not isinstance(response.return_value, dict):
            msg = "query-status returned a non-object payload"
            raise QmpProtocolError(msg, {"return": response.return_value})
        return dict(response.return_value)

    async def is_running(self, timeout: float | None = None) -> bool:
        """Return True if the VM reports itself running. Never raises QmpError."""
        try:
            status = await self.check_status(timeout=timeout)
        except QmpError as e:
            self._logger.debug("QMP status query failed", extra={"socket": self._socket_path, "error": str(e)})
            return False
        return status.get("running") is True

    async def query_commands(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """List the commands this QEMU build supports."""
        response = await self.execute(constants.QMP_QUERY_COMMANDS_COMMAND, timeout=timeout)
        response.raise_for_error(constants.QMP_QUERY_COMMANDS_COMMAND)
        if not isinstance(response.return_value, list):
            msg = "query-commands returned a non-list payload"
            raise QmpProtocolError(msg, {"return": response.return_value})
        return [entry for entry in response.return_value if isinstance(entry, dict)]

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def shutdown(
        self,
        poll_interval: float = constants.SHUTDOWN_POLL_INTERVAL_SECONDS,
        graceful_timeout: float = constants.STOP_TIMEOUT_SECONDS,
        force_on_timeout: bool = True,
        force_timeout: float = constants.FORCE_QUIT_TIMEOUT_SECONDS,
    ) -> bool:
        """Shut the VM down, observing the QMP socket closing as success.

        Phase 1 sends system_powerdown every poll_interval until
        graceful_timeout elapses. If the guest ignores it and
        force_on_timeout is set, phase 2 does the same with quit for
        force_timeout. A command can race with QEMU exiting, so the
        command is repeated rather than awaited once.

        A powerdown that got no reply drops the connection; phase 2 then
        reconnects once (within force_timeout) before sending quit.

        Returns:
            True once the connection closed during either phase, False if
            neither phase saw it close. Timing out is not an error.

        Raises:
            QmpNotConnectedError: Client is disconnected
            QmpProtocolError: Server sent an unrecognized message
            QmpConnectionError: I/O failure other than the peer closing
        """
        if not self._connected:
            raise QmpNotConnectedError("Not connected to QMP", {"socket": self._socket_path})

        if await self._shutdown_phase(constants.QMP_POWERDOWN_COMMAND, poll_interval, graceful_timeout):
            return True

        if not force_on_timeout:
            return False

        if not self._connected:
            try:
                await self.connect(timeout=force_timeout)
            except QmpError as e:
                self._logger.warning(
                    "QMP reconnect for quit failed",
                    extra={"socket": self._socket_path, "error": str(e), "error_type": type(e).__name__},
                )
                return False

        self._logger.info(
            "Graceful shutdown timed out, sending quit",
            extra={"socket": self._socket_path, "graceful_timeout": graceful_timeout},
        )
        return await self._shutdown_phase(constants.QMP_QUIT_COMMAND, poll_interval, force_timeout)

    async def _shutdown_phase(self, command: str, poll_interval: float, timeout: float) -> bool:
        deadline = asyncio.get_running_loop().time() + timeout

        def _keep_polling(closed: bool) -> bool:
            return not closed and self._connected

        def _timed_out(_retry_state: RetryCallState) -> bool:
            return False

        retrying = AsyncRetrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(poll_interval),
            retry=retry_if_result(_keep_polling),
            retry_error_callback=_timed_out,
        )
        return await retrying(self._send_shutdown_command, command, deadline)

    async def _send_shutdown_command(self, command: str, deadline: float) -> bool:
        """Send one shutdown command; True if the connection closed."""
        remaining = max(deadline - asyncio.get_running_loop().time(), _MIN_SHUTDOWN_COMMAND_TIMEOUT)
        try:
            response = await self.execute(command, timeout=remaining)
        except QmpConnectionClosedError:
            self._logger.info("QMP connection closed after %s, VM exited", command, extra={"socket": self._socket_path})
            return True
        except QmpCancelledError:
            self._logger.warning("No reply to %s before deadline", command, extra={"socket": self._socket_path})
            return False

        if response.is_error:
            self._logger.debug("QMP %s rejected: %s", command, response.error)
        return False

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def drain_events(self) -> list[QmpEvent]:
        """Return all buffered events in arrival order and clear the buffer."""
        with self._events_lock:
            events = self._events
            self._events = []
        return events

    async def __aenter__(self) -> Self:
        """Enter async context manager, connecting to QMP."""
        await self.connect()
        return self

    async def __aexit__(
        self, _exc_type: type[BaseException] | None, _exc_val: BaseException | None, _exc_tb: object
    ) -> None:
        """Exit async context manager, closing the QMP connection."""
        await self.close()
