"""vmwarden: supervise QEMU virtual machines over QMP.

Reports whether a VM launched elsewhere is running and responsive, and
stops it gracefully (system_powerdown), then forcefully (quit, SIGKILL),
removing its PID file, sockets and serial log afterwards.

Status:
    ```python
    from pathlib import Path
    from vmwarden import VmEntry, VmSupervisor

    supervisor = VmSupervisor(VmEntry.from_data_dir("web", Path(".vmwarden/web")))
    status = await supervisor.get_status()
    print(status.running, status.alive, status.qmp_connected)
    ```

Stop:
    ```python
    await supervisor.stop(timeout=20.0, force_after_timeout=True)
    ```

Raw QMP:
    ```python
    from vmwarden import QmpClient

    async with QmpClient("/path/to/qmp.socket") as qmp:
        print(await qmp.check_status())
        events = qmp.drain_events()
    ```

Requirements:
    - Python 3.12+
    - QEMU started with -qmp unix:<path>,server,nowait and -pidfile <path>
"""

from vmwarden.exceptions import (
    InvalidPidError,
    KillFailedError,
    PidFileError,
    PidOutOfRangeError,
    QmpCancelledError,
    QmpCommandError,
    QmpConnectionClosedError,
    QmpConnectionError,
    QmpError,
    QmpNotConnectedError,
    QmpPermissionError,
    QmpProtocolError,
    QmpSocketNotFoundError,
    RuntimeCleanupError,
    WardenError,
)
from vmwarden.models import VmEntry, VmStatus
from vmwarden.qmp_client import QmpClient
from vmwarden.qmp_protocol import QmpCommand, QmpEvent, QmpResponse
from vmwarden.settings import Settings
from vmwarden.vm_supervisor import VmSupervisor

__all__ = [
    "InvalidPidError",
    "KillFailedError",
    "PidFileError",
    "PidOutOfRangeError",
    "QmpCancelledError",
    "QmpClient",
    "QmpCommand",
    "QmpCommandError",
    "QmpConnectionClosedError",
    "QmpConnectionError",
    "QmpError",
    "QmpEvent",
    "QmpNotConnectedError",
    "QmpPermissionError",
    "QmpProtocolError",
    "QmpResponse",
    "QmpSocketNotFoundError",
    "RuntimeCleanupError",
    "Settings",
    "VmEntry",
    "VmStatus",
    "VmSupervisor",
    "WardenError",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vmwarden")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
