"""Unit tests for Settings.

No mocks - uses real environment variables.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from vmwarden import constants
from vmwarden.settings import Settings


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.chdir(tmp_path)
        settings = Settings()

        assert settings.runtime_dir == tmp_path / ".vmwarden"
        assert settings.connect_timeout == constants.QMP_CONNECT_TIMEOUT_SECONDS
        assert settings.stop_timeout == 20.0
        assert settings.force_after_timeout is True
        assert settings.shutdown_poll_interval == 1.0
        assert settings.force_quit_timeout == 5.0

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("VMWARDEN_RUNTIME_DIR", str(tmp_path))
        monkeypatch.setenv("VMWARDEN_STOP_TIMEOUT", "60")
        monkeypatch.setenv("VMWARDEN_FORCE_AFTER_TIMEOUT", "false")

        settings = Settings()

        assert settings.runtime_dir == tmp_path
        assert settings.stop_timeout == 60.0
        assert settings.force_after_timeout is False

    def test_unrelated_env_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VMWARDEN_NOT_A_SETTING", "x")
        Settings()

    def test_vm_data_dir(self, tmp_path: Path) -> None:
        assert Settings(runtime_dir=tmp_path).vm_data_dir("web") == tmp_path / "web"

    @pytest.mark.parametrize(
        "field",
        ["connect_timeout", "status_timeout", "shutdown_poll_interval"],
    )
    def test_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_zero_stop_timeout_allowed(self) -> None:
        """Zero skips straight to the forced phase."""
        assert Settings(stop_timeout=0).stop_timeout == 0

    def test_negative_stop_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(stop_timeout=-1)
