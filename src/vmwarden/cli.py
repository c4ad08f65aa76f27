"""Command-line interface for vmwarden.

Usage:
    vmwarden status web                  # Human-readable status
    vmwarden status web --json | jq .    # JSON report
    vmwarden stop web --timeout 30       # Graceful, then forced
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click

from vmwarden import VmEntry, VmStatus, VmSupervisor, WardenError, __version__
from vmwarden._logging import configure_logging
from vmwarden.settings import Settings

# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CLI_ERROR = 2


def format_status(status: VmStatus) -> str:
    """Render a status snapshot for terminal output."""
    lines = [f"Status for VM: {status.name}"]

    if status.running:
        lines.append(f"  Running: yes (PID: {status.pid})" if status.pid is not None else "  Running: yes")
        lines.append("  Alive: yes (QMP responsive)" if status.alive else "  Alive: no (QMP not responsive)")
    else:
        lines.append("  Running: no")

    lines.append("  QMP: connected" if status.qmp_connected else "  QMP: not connected")
    lines.extend(
        [
            f"  SSH Port: {status.ssh_port}",
            f"  SSH Config: {status.ssh_config}",
            f"  PID File: {status.pid_file}",
            f"  Serial File: {status.serial_file}",
            f"  QMP Socket: {status.qmp_socket}",
            f"  Monitor Socket: {status.monitor_socket}",
        ]
    )

    if status.status_details and isinstance(status.status_details.get("status"), str):
        lines.append(f"  VM Status: {status.status_details['status']}")

    return "\n".join(lines)


def format_error(title: str, message: str) -> str:
    return "\n".join([click.style(f"Error: {title}", fg="red", bold=True), "", f"  {message}"])


def _resolve_entry(name: str, data_dir: Path | None, settings: Settings) -> VmEntry:
    return VmEntry.from_data_dir(name, data_dir or settings.vm_data_dir(name))


async def run_status(entry: VmEntry, settings: Settings, json_output: bool) -> int:
    supervisor = VmSupervisor(entry, settings)
    try:
        status = await supervisor.get_status()
    except WardenError as e:
        click.echo(format_error("Cannot get VM status", e.message), err=True)
        return EXIT_FAILURE

    if json_output:
        click.echo(json.dumps(status.to_report(), indent=2))
    else:
        click.echo(format_status(status))
    return EXIT_SUCCESS


async def run_stop(entry: VmEntry, settings: Settings, timeout: float, force: bool) -> int:
    supervisor = VmSupervisor(entry, settings)
    try:
        status = await supervisor.get_status()
        if not status.running:
            click.echo(f"VM '{entry.name}' is not running")
            # Only removes stale runtime files
            await supervisor.stop(status=status)
            return EXIT_SUCCESS

        if status.pid is not None:
            click.echo(f"VM is running with PID: {status.pid}")
        else:
            click.echo("VM is running (PID not available)")

        click.echo("Attempting to stop VM...")
        stopped = await supervisor.stop(timeout=timeout, force_after_timeout=force, status=status)
    except WardenError as e:
        click.echo(format_error("Failed to stop VM", e.message), err=True)
        return EXIT_FAILURE

    if not stopped:
        click.echo(f"Failed to stop VM '{entry.name}'", err=True)
        return EXIT_FAILURE

    click.echo(f"VM '{entry.name}' stopped successfully")
    return EXIT_SUCCESS


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-v", "--verbose", is_flag=True, help="Log QMP traffic to stderr")
@click.option("-q", "--quiet", is_flag=True, help="Only log errors")
@click.version_option(__version__, "-V", "--version", prog_name="vmwarden")
def main(verbose: bool, quiet: bool) -> None:
    """Inspect and stop QEMU virtual machines over QMP."""
    configure_logging(level=logging.DEBUG if verbose else None, quiet=quiet)


@main.command()
@click.argument("name")
@click.option(
    "-d",
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="VM data directory (default: $VMWARDEN_RUNTIME_DIR/NAME)",
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def status(name: str, data_dir: Path | None, json_output: bool) -> NoReturn:
    """Show running status, ports and socket paths of a VM."""
    settings = Settings()
    entry = _resolve_entry(name, data_dir, settings)
    sys.exit(asyncio.run(run_status(entry, settings, json_output)))


@main.command()
@click.argument("name")
@click.option(
    "-d",
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="VM data directory (default: $VMWARDEN_RUNTIME_DIR/NAME)",
)
@click.option("-t", "--timeout", type=float, default=None, help="Graceful shutdown timeout in seconds")
@click.option("--force/--no-force", default=None, help="Send quit if graceful shutdown times out")
def stop(name: str, data_dir: Path | None, timeout: float | None, force: bool | None) -> NoReturn:
    """Stop a VM gracefully, force-killing it if it does not exit in time."""
    settings = Settings()
    entry = _resolve_entry(name, data_dir, settings)
    resolved_timeout = settings.stop_timeout if timeout is None else timeout
    resolved_force = settings.force_after_timeout if force is None else force
    sys.exit(asyncio.run(run_stop(entry, settings, resolved_timeout, resolved_force)))


if __name__ == "__main__":
    main()
