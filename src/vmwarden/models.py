"""Data models for vmwarden."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# File names the launcher uses inside a VM's data directory
PID_FILE_NAME = "pid"
SERIAL_FILE_NAME = "serial"
QMP_SOCKET_NAME = "qmp.socket"
MONITOR_SOCKET_NAME = "monitor.socket"
SSH_CONFIG_NAME = "ssh.conf"


class VmEntry(BaseModel):
    """Resolved VM descriptor: a name plus the runtime paths the launcher uses.

    Produced by configuration; vmwarden only reads the paths.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, description="VM name")
    pid_file: Path = Field(description="PID file written by QEMU (-pidfile)")
    qmp_socket: Path = Field(description="QMP control socket")
    monitor_socket: Path = Field(description="HMP monitor socket")
    serial_file: Path = Field(description="Serial console output file")
    ssh_config: Path = Field(description="Generated per-VM ssh_config")
    vars: dict[str, Any] = Field(default_factory=dict, description="Template variables from configuration")

    @classmethod
    def from_data_dir(cls, name: str, data_dir: Path, vars: dict[str, Any] | None = None) -> VmEntry:  # noqa: A002
        """Lay out runtime paths under a per-VM data directory."""
        data_dir = data_dir.absolute()
        return cls(
            name=name,
            pid_file=data_dir / PID_FILE_NAME,
            qmp_socket=data_dir / QMP_SOCKET_NAME,
            monitor_socket=data_dir / MONITOR_SOCKET_NAME,
            serial_file=data_dir / SERIAL_FILE_NAME,
            ssh_config=data_dir / SSH_CONFIG_NAME,
            vars=vars or {},
        )

    @property
    def ssh_port(self) -> Any:
        """Forwarded SSH port, passed through uninterpreted.

        Reads vars["ssh"]["port"], falling back to the older flat
        vars["ssh_host"] key.
        """
        ssh = self.vars.get("ssh")
        if isinstance(ssh, dict) and "port" in ssh:
            return ssh["port"]
        return self.vars.get("ssh_host")

    @property
    def runtime_files(self) -> tuple[Path, ...]:
        """Every artifact removed when the VM is stopped."""
        return (self.pid_file, self.serial_file, self.qmp_socket, self.monitor_socket, self.ssh_config)


class VmStatus(BaseModel):
    """Point-in-time VM status. Built fresh on every query, never cached."""

    model_config = ConfigDict(frozen=True)

    name: str
    pid: int | None = Field(default=None, description="PID from the PID file (None if absent or empty)")
    pid_file: Path
    running: bool = Field(description="Authoritative: QMP answer if reachable, else PID liveness check")
    alive: bool = Field(description="QMP reachable and reporting the VM running")
    qmp_connected: bool
    ssh_port: Any = None
    ssh_config: Path
    serial_file: Path
    qmp_socket: Path
    monitor_socket: Path
    status_details: dict[str, Any] | None = Field(default=None, description="Last query-status payload")

    def to_report(self) -> dict[str, Any]:
        """Render the JSON status report."""
        report: dict[str, Any] = {
            "name": self.name,
            "pid": self.pid,
            "pid_file": str(self.pid_file),
            "running": self.running,
            "alive": self.alive,
            "qmp_connected": self.qmp_connected,
            "ssh": {"port": self.ssh_port, "config": str(self.ssh_config)},
            "serial_file": str(self.serial_file),
            "qmp_socket": str(self.qmp_socket),
            "monitor_socket": str(self.monitor_socket),
        }
        if self.status_details is not None:
            report["status_details"] = self.status_details
        return report
