"""Scripted QMP server for client and supervisor tests.

Runs on a real Unix socket so tests exercise the full stack (dial →
greeting → capabilities → command/response/event framing) without QEMU.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

# Script sentinels
CLOSE = object()
"""Close the connection instead of answering (QEMU exiting)."""

HANG = object()
"""Read the command and never answer."""

GREETING: dict[str, Any] = {
    "QMP": {
        "version": {"qemu": {"micro": 0, "minor": 2, "major": 9}, "package": ""},
        "capabilities": ["oob"],
    }
}

Script = dict[str, Any] | list[dict[str, Any]] | object | Callable[[dict[str, Any]], Any]


def default_responses() -> dict[str, Script]:
    return {
        "qmp_capabilities": {"return": {}},
        "query-status": {"return": {"running": True, "singlestep": False, "status": "running"}},
        "query-commands": {"return": [{"name": "query-commands"}, {"name": "query-status"}]},
        "system_powerdown": {"return": {}},
        "quit": CLOSE,
    }


class MockQmpServer:
    """Scripted QMP server.

    `responses` maps a command name to what the server does on receipt:
    a message dict, a list of messages written in order (events then the
    response), CLOSE, HANG, or a callable taking the command and
    returning any of those. Unknown commands get CommandNotFound.
    """

    def __init__(self, socket_path: Path) -> None:
        self.socket_path = socket_path
        self.greeting: bytes = json.dumps(GREETING).encode() + b"\n"
        self.responses: dict[str, Script] = default_responses()
        self.commands: list[dict[str, Any]] = []
        self.connections = 0
        self._server: asyncio.Server | None = None
        self._writers: list[asyncio.StreamWriter] = []

    @property
    def command_names(self) -> list[str]:
        return [c.get("execute", "") for c in self.commands]

    async def start(self) -> None:
        self._server = await asyncio.start_unix_server(self._handle, path=str(self.socket_path))

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        if self._server is not None:
            self._server.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._server.wait_closed(), timeout=2.0)
            self._server = None

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        try:
            writer.write(self.greeting)
            await writer.drain()
            while line := await reader.readline():
                command = json.loads(line)
                self.commands.append(command)
                script = self.responses.get(
                    command.get("execute", ""),
                    {"error": {"class": "CommandNotFound", "desc": "Command not found"}},
                )
                if callable(script):
                    script = script(command)
                if script is CLOSE:
                    break
                if script is HANG:
                    continue
                messages = script if isinstance(script, list) else [script]
                for message in messages:
                    writer.write(json.dumps(message).encode() + b"\n")
                await writer.drain()
        except (ConnectionError, OSError):
            pass
        finally:
            writer.close()
