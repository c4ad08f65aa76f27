"""Runtime artifact cleanup for stopped VMs.

Missing files are not errors (the launcher may never have created them,
or QEMU removed its own sockets on exit). Any other removal failure is
reported, since a stale PID file or socket makes the next status query
lie.
"""

from collections.abc import Iterable
from pathlib import Path

import aiofiles.os

from vmwarden._logging import get_logger
from vmwarden.exceptions import RuntimeCleanupError

logger = get_logger(__name__)


async def cleanup_file(file_path: Path, context_id: str) -> bool:
    """Delete a runtime file.

    Args:
        file_path: File to delete
        context_id: Context for logging (VM name)

    Returns:
        True if the file was deleted, False if it did not exist

    Raises:
        RuntimeCleanupError: Removal failed for any reason other than absence
    """
    try:
        await aiofiles.os.remove(file_path)
    except FileNotFoundError:
        # aiofiles lacks missing_ok
        logger.debug("already absent", extra={"context_id": context_id, "path": str(file_path)})
        return False
    except OSError as e:
        logger.error(
            "runtime file removal failed",
            extra={"context_id": context_id, "path": str(file_path), "error": str(e), "error_type": type(e).__name__},
        )
        raise RuntimeCleanupError(f"Failed to remove {file_path}: {e}", str(file_path)) from e

    logger.debug("deleted", extra={"context_id": context_id, "path": str(file_path)})
    return True


async def cleanup_files(file_paths: Iterable[Path], context_id: str) -> int:
    """Delete every file, then report the first failure.

    A failure on one file does not stop removal of the rest.

    Returns:
        Number of files actually deleted

    Raises:
        RuntimeCleanupError: First removal failure encountered
    """
    removed = 0
    first_error: RuntimeCleanupError | None = None
    for path in file_paths:
        try:
            if await cleanup_file(path, context_id):
                removed += 1
        except RuntimeCleanupError as e:
            if first_error is None:
                first_error = e

    if first_error is not None:
        raise first_error
    return removed
