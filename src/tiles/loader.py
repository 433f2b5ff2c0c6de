"""
Чтение байтов тайлов с диска.

How tile files arrive (download, archive extraction) is not this module's
concern: the core needs only a byte-readable handle per tile path. The
``opener`` argument is that seam; the default opens local files.
"""

from __future__ import annotations

import errno
import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from shared.constants import HEADER_PEEK_BYTES, TILE_READ_BACKOFF_S, TILE_READ_RETRIES

logger = logging.getLogger(__name__)

TileOpener = Callable[[Path], BinaryIO]

_TRANSIENT_ERRNOS = frozenset(
    {errno.EINTR, errno.EAGAIN, errno.EIO, errno.ETIMEDOUT, errno.EBUSY}
)


def open_local(path: Path) -> BinaryIO:
    """Open a local tile file for binary reading."""
    return Path(path).open('rb')


def is_transient(exc: OSError) -> bool:
    """Whether a read failure is worth retrying.

    Missing files and permission problems will not fix themselves; interrupted
    or timed-out reads and generic I/O errors may.
    """
    if isinstance(
        exc,
        (FileNotFoundError, PermissionError, IsADirectoryError, NotADirectoryError),
    ):
        return False
    if isinstance(exc, (InterruptedError, TimeoutError, BlockingIOError)):
        return True
    return exc.errno in _TRANSIENT_ERRNOS


def read_tile_prefix(
    path: Path,
    size: int = HEADER_PEEK_BYTES,
    *,
    opener: TileOpener = open_local,
) -> bytes:
    """Read the first ``size`` bytes of a tile (enough for its header)."""
    with opener(path) as fh:
        return fh.read(size)


def read_tile_bytes(
    path: Path,
    *,
    retries: int = TILE_READ_RETRIES,
    backoff: float = TILE_READ_BACKOFF_S,
    opener: TileOpener = open_local,
) -> bytes:
    """Read a whole tile file, retrying transient I/O failures.

    Args:
        path: Tile file path.
        retries: Extra attempts after the first one for transient errors.
        backoff: Base delay in seconds; doubles after every failed attempt.
        opener: Callable returning a binary file object for ``path``.

    Returns:
        File contents.

    Raises:
        OSError: Non-transient failure, or transient failure after all retries.
    """
    for attempt in range(retries + 1):
        try:
            with opener(path) as fh:
                return fh.read()
        except OSError as e:
            if not is_transient(e) or attempt >= retries:
                raise
            delay = backoff * (2**attempt)
            logger.warning(
                'Transient read error on %s (attempt %d/%d): %s; retrying in %.2fs',
                path,
                attempt + 1,
                retries + 1,
                e,
                delay,
            )
            time.sleep(delay)
    msg = f'Unreachable: read loop for {path} exited without result'
    raise RuntimeError(msg)
