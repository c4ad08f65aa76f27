"""VM supervisor: authoritative status and graceful-then-forced stop.

Combines two liveness sources for a VM launched elsewhere:
- the PID file plus a signal-0 liveness check (OS level)
- a QMP query-status round trip (protocol level, authoritative when reachable)

Every operation builds its own short-lived QmpClient; no connection is
kept between calls, so a restarted QEMU never meets a stale socket.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from vmwarden._logging import get_logger
from vmwarden.exceptions import QmpError
from vmwarden.models import VmEntry, VmStatus
from vmwarden.process import force_kill, is_process_running, read_pid_file
from vmwarden.qmp_client import QmpClient
from vmwarden.resource_cleanup import cleanup_files
from vmwarden.settings import Settings

logger = get_logger(__name__)


class VmSupervisor:
    """Status and stop operations for one VM.

    Usage:
        supervisor = VmSupervisor(VmEntry.from_data_dir("web", Path(".vmwarden/web")))
        status = await supervisor.get_status()
        if status.running:
            await supervisor.stop(timeout=30.0)
    """

    def __init__(
        self,
        entry: VmEntry,
        settings: Settings | None = None,
        *,
        qmp_logger: logging.Logger | None = None,
    ):
        """Initialize supervisor.

        Args:
            entry: VM descriptor (name + runtime paths)
            settings: Timeouts and stop policy. Defaults read from the environment.
            qmp_logger: Trace sink handed to every QmpClient this supervisor creates
        """
        self.entry = entry
        self.settings = settings or Settings()
        self._qmp_logger = qmp_logger

    def _new_client(self) -> QmpClient:
        return QmpClient(self.entry.qmp_socket, logger=self._qmp_logger)

    async def _query_qmp(self, timeout: float | None) -> tuple[bool, bool, dict[str, Any] | None]:
        """Ask QEMU for its run state.

        Returns:
            (connected, alive, status_details). Never raises QmpError.
        """
        client = self._new_client()
        connected = False
        details: dict[str, Any] | None = None
        try:
            async with asyncio.timeout(timeout):
                await client.connect(timeout=None)
                connected = True
                details = await client.check_status()
        except (QmpError, TimeoutError) as e:
            logger.debug(
                "QMP status check failed",
                extra={"vm": self.entry.name, "connected": connected, "error": str(e), "error_type": type(e).__name__},
            )
        finally:
            await client.close()

        alive = details is not None and details.get("running") is True
        return connected, alive, details

    async def get_status(self, timeout: float | None = None) -> VmStatus:
        """Build a fresh status snapshot.

        QMP unavailability only lowers confidence (qmp_connected/alive are
        False and running falls back to the PID liveness check); it never fails
        the call.

        Args:
            timeout: Deadline for the QMP part. Defaults to settings.status_timeout.

        Raises:
            PidFileError: PID file is unreadable or corrupt (InvalidPidError,
                PidOutOfRangeError). A corrupt file could hide a live
                process, so it is not treated as "not running".
        """
        if timeout is None:
            timeout = self.settings.status_timeout

        pid = await read_pid_file(self.entry.pid_file)
        connected, alive, details = await self._query_qmp(timeout)

        if connected:
            running = alive  # QMP is authoritative
        else:
            running = await is_process_running(pid)

        status = VmStatus(
            name=self.entry.name,
            pid=pid,
            pid_file=self.entry.pid_file,
            running=running,
            alive=alive,
            qmp_connected=connected,
            ssh_port=self.entry.ssh_port,
            ssh_config=self.entry.ssh_config,
            serial_file=self.entry.serial_file,
            qmp_socket=self.entry.qmp_socket,
            monitor_socket=self.entry.monitor_socket,
            status_details=details if connected else None,
        )
        logger.debug(
            "VM status",
            extra={"vm": self.entry.name, "pid": pid, "running": running, "alive": alive, "qmp_connected": connected},
        )
        return status

    async def is_alive(self, timeout: float | None = None) -> bool:
        """Protocol-only liveness: QMP reachable and reporting running."""
        if timeout is None:
            timeout = self.settings.status_timeout
        _connected, alive, _details = await self._query_qmp(timeout)
        return alive

    async def stop(
        self,
        timeout: float | None = None,
        force_after_timeout: bool | None = None,
        connect_timeout: float | None = None,
        *,
        status: VmStatus | None = None,
    ) -> bool:
        """Stop the VM and remove its runtime files.

        Escalation: system_powerdown → quit (if force_after_timeout) →
        SIGKILL of the PID-file process → runtime file cleanup. Stopping
        a VM that is not running only cleans up.

        Args:
            timeout: Graceful shutdown window. Defaults to settings.stop_timeout.
            force_after_timeout: Send quit after the graceful window.
                Defaults to settings.force_after_timeout.
            connect_timeout: Deadline for status and QMP connect.
                Defaults to settings.connect_timeout.
            status: Snapshot from a get_status() call the caller just made.
                Skips the status query; must belong to this VM.

        Returns:
            True once the VM is down and its runtime files are removed

        Raises:
            PidFileError: PID file is unreadable or corrupt
            KillFailedError: SIGKILL fallback could not be delivered
            RuntimeCleanupError: A runtime file could not be removed
        """
        if timeout is None:
            timeout = self.settings.stop_timeout
        if force_after_timeout is None:
            force_after_timeout = self.settings.force_after_timeout
        if connect_timeout is None:
            connect_timeout = self.settings.connect_timeout

        if status is None:
            status = await self.get_status(timeout=connect_timeout)
        if not status.running:
            logger.info("VM not running, removing stale runtime files", extra={"vm": self.entry.name})
            await self.cleanup_runtime_files()
            return True

        logger.info("Stopping VM", extra={"vm": self.entry.name, "pid": status.pid, "timeout": timeout})

        client = self._new_client()
        try:
            try:
                await client.connect(timeout=connect_timeout)
            except QmpError as e:
                logger.warning(
                    "QMP unreachable, falling back to SIGKILL",
                    extra={"vm": self.entry.name, "error": str(e)},
                )
                await self._kill_fallback(status.pid)
            else:
                try:
                    stopped = await client.shutdown(
                        poll_interval=self.settings.shutdown_poll_interval,
                        graceful_timeout=timeout,
                        force_on_timeout=force_after_timeout,
                        force_timeout=self.settings.force_quit_timeout,
                    )
                except QmpError as e:
                    logger.warning(
                        "QMP shutdown failed, falling back to SIGKILL",
                        extra={"vm": self.entry.name, "error": str(e)},
                    )
                    stopped = False
                if not stopped:
                    await self._kill_fallback(status.pid)
        finally:
            await client.close()

        await self.cleanup_runtime_files()
        logger.info("VM stopped", extra={"vm": self.entry.name})
        return True

    async def _kill_fallback(self, pid: int | None) -> None:
        if pid is None:
            logger.warning("No PID known, cannot force kill", extra={"vm": self.entry.name})
            return
        await force_kill(pid)

    async def cleanup_runtime_files(self) -> int:
        """Remove PID file, serial file, both sockets and the SSH config.

        Returns:
            Number of files removed

        Raises:
            RuntimeCleanupError: A file exists but could not be removed
        """
        return await cleanup_files(self.entry.runtime_files, context_id=self.entry.name)
