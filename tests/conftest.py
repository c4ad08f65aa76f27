"""Shared pytest fixtures for vmwarden tests."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest

from tests.qmp_helpers import MockQmpServer


@pytest.fixture
def short_tmp_dir() -> Iterator[Path]:
    """Temp dir with a short path (Unix socket paths are limited to ~104 bytes)."""
    path = Path(tempfile.mkdtemp(prefix="vmw-", dir="/tmp"))
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
async def qmp_server(short_tmp_dir: Path) -> AsyncIterator[MockQmpServer]:
    """Running mock QMP server at <short_tmp_dir>/qmp.socket."""
    server = MockQmpServer(short_tmp_dir / "qmp.socket")
    await server.start()
    yield server
    await server.stop()
