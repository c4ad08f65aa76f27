"""Runtime configuration from environment variables."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from vmwarden import constants


class Settings(BaseSettings):
    """Runtime configuration from environment variables.

    All settings can be overridden via environment variables with VMWARDEN_ prefix.
    Example: VMWARDEN_STOP_TIMEOUT=60
    """

    model_config = SettingsConfigDict(
        env_prefix="VMWARDEN_",
        extra="ignore",
    )

    # Where per-VM data directories live (<runtime_dir>/<vm-name>/)
    runtime_dir: Path = Field(default_factory=lambda: Path.cwd() / ".vmwarden")

    # QMP
    connect_timeout: float = Field(default=constants.QMP_CONNECT_TIMEOUT_SECONDS, gt=0)
    status_timeout: float = Field(default=constants.STATUS_TIMEOUT_SECONDS, gt=0)

    # Stop
    stop_timeout: float = Field(default=constants.STOP_TIMEOUT_SECONDS, ge=0)
    force_after_timeout: bool = True
    shutdown_poll_interval: float = Field(default=constants.SHUTDOWN_POLL_INTERVAL_SECONDS, gt=0)
    force_quit_timeout: float = Field(default=constants.FORCE_QUIT_TIMEOUT_SECONDS, ge=0)

    def vm_data_dir(self, name: str) -> Path:
        """Data directory holding a VM's PID file, sockets and serial log."""
        return self.runtime_dir / name
