"""Constants for vmwarden protocol handling and limits."""

from typing import Final

# ============================================================================
# QMP Commands
# ============================================================================

QMP_CAPABILITIES_COMMAND: Final[str] = "qmp_capabilities"
"""Handshake command; must precede every other command on a connection."""

QMP_STATUS_COMMAND: Final[str] = "query-status"
"""Returns {"running": bool, "status": str, ...}."""

QMP_QUERY_COMMANDS_COMMAND: Final[str] = "query-commands"

QMP_POWERDOWN_COMMAND: Final[str] = "system_powerdown"
"""ACPI power button: asks the guest OS for an orderly shutdown."""

QMP_QUIT_COMMAND: Final[str] = "quit"
"""Terminates QEMU immediately regardless of guest state."""

# ============================================================================
# Timeouts
# ============================================================================

QMP_CONNECT_TIMEOUT_SECONDS: Final[float] = 5.0
"""Default deadline for dial + greeting + capabilities negotiation."""

STATUS_TIMEOUT_SECONDS: Final[float] = 10.0
"""Default deadline for a full status query."""

STOP_TIMEOUT_SECONDS: Final[float] = 20.0
"""Default graceful shutdown window before escalating."""

SHUTDOWN_POLL_INTERVAL_SECONDS: Final[float] = 1.0
"""Interval between repeated shutdown commands."""

FORCE_QUIT_TIMEOUT_SECONDS: Final[float] = 5.0
"""Window for the `quit` phase after the graceful phase times out."""

QMP_CLOSE_TIMEOUT_SECONDS: Final[float] = 1.0
"""Max wait for the transport to finish closing."""

# ============================================================================
# Limits
# ============================================================================

QMP_READ_LIMIT: Final[int] = 1024 * 1024
"""StreamReader buffer limit; must exceed the longest QMP line
(query-commands / query-qmp-schema replies run to hundreds of KB)."""

MAX_PID: Final[int] = 2**23
"""Largest PID accepted from a PID file (Linux pid_max upper bound is 2**22)."""
