"""PID file parsing and OS-level process probing.

The PID file is the only record that a launch happened; PIDs are never
obtained any other way. psutil calls run in a worker thread so a stuck
/proc read cannot block the event loop.
"""

import asyncio
import re
import signal
from pathlib import Path

import aiofiles
import psutil

from vmwarden import constants
from vmwarden._logging import get_logger
from vmwarden.exceptions import InvalidPidError, KillFailedError, PidFileError, PidOutOfRangeError

logger = get_logger(__name__)

# Optional sign plus ASCII digits only; int() would also accept "1_000" and non-ASCII digits
_PID_RE = re.compile(r"[+-]?[0-9]+")

# Digits in MAX_PID; longer magnitudes are out of range without converting
_MAX_PID_DIGITS = len(str(constants.MAX_PID))


def parse_pid(content: str) -> int | None:
    """Parse PID file content.

    Args:
        content: Raw file content

    Returns:
        The PID, or None when the content is empty or whitespace only

    Raises:
        InvalidPidError: Content is not a decimal integer
        PidOutOfRangeError: Integer is outside (0, 2**23]
    """
    text = content.strip()
    if not text:
        return None

    if not _PID_RE.fullmatch(text):
        raise InvalidPidError(f"Invalid PID in file: {text[:32]!r}", {"content": text[:32]})

    # int() refuses strings past sys.get_int_max_str_digits()
    magnitude = text.lstrip("+-").lstrip("0")
    if len(magnitude) > _MAX_PID_DIGITS:
        raise PidOutOfRangeError(f"PID {text[:32]}... is out of reasonable range", {"content": text[:32]})

    pid = int(magnitude or "0")
    if text.startswith("-"):
        pid = -pid
    if pid <= 0 or pid > constants.MAX_PID:
        raise PidOutOfRangeError(f"PID {pid} is out of reasonable range", {"pid": pid})
    return pid


async def read_pid_file(path: Path) -> int | None:
    """Read and validate the PID recorded in a PID file.

    Returns:
        The PID, or None if the file is missing or empty

    Raises:
        InvalidPidError: Content is not a decimal integer
        PidOutOfRangeError: Integer is outside (0, 2**23]
        PidFileError: File exists but cannot be read
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise PidFileError(f"Failed to read PID file: {e}", {"path": str(path)}) from e

    try:
        return parse_pid(content)
    except PidFileError as e:
        e.context["path"] = str(path)
        raise


def _signal_zero(pid: int) -> bool:
    try:
        psutil.Process(pid).send_signal(0)
    except (psutil.NoSuchProcess, psutil.AccessDenied, ProcessLookupError, PermissionError):
        return False
    return True


async def is_process_running(pid: int | None) -> bool:
    """Check whether a process exists by sending it signal 0.

    Any failure, including lack of permission to signal it, counts as
    not running. None is never running.
    """
    if pid is None:
        return False
    return await asyncio.to_thread(_signal_zero, pid)


def _kill(pid: int) -> None:
    psutil.Process(pid).send_signal(signal.SIGKILL)


async def force_kill(pid: int) -> bool:
    """Send SIGKILL to the process.

    Returns:
        True if the signal was delivered, False if the process had
        already exited

    Raises:
        KillFailedError: The process exists but cannot be signalled
    """
    logger.warning("Sending SIGKILL", extra={"pid": pid})
    try:
        await asyncio.to_thread(_kill, pid)
    except (psutil.NoSuchProcess, ProcessLookupError):
        # Exited between the status check and the kill
        logger.debug("Process already gone", extra={"pid": pid})
        return False
    except (psutil.Error, OSError) as e:
        raise KillFailedError(f"Failed to kill process {pid}: {e}", pid) from e
    return True
