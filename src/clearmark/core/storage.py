"""On-disk bookkeeping for uploads and processed results.

The service keeps two flat directories:

- ``uploads_dir`` receives every raw upload as ``temp_<stamp>_<name>``
- ``processed_dir`` receives every result as ``processed_<stamp>_<name>``

``<stamp>`` is the request's millisecond timestamp, shared by the upload and
its result so the pair can be matched up later.  Raw uploads can optionally
be purged once they are older than ``upload_retention_hours``.
"""

from __future__ import annotations

import logging
import os
import re
import time
from pathlib import Path, PurePath

from clearmark.core.config import ClearmarkConfig

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_DASH_RUNS = re.compile(r"-+")

UPLOAD_PREFIX = "temp_"
PROCESSED_PREFIX = "processed_"


def sanitize_filename(filename: str) -> str:
    """Make a client-supplied filename safe to use on disk.

    Directory components are dropped.  In the base name every character other
    than ASCII letters, digits, ``-`` and ``_`` becomes ``-``, runs of dashes
    collapse to one, and leading/trailing dashes are removed.  An empty
    result becomes ``image``.  The extension is kept as-is.

    Examples:
        >>> sanitize_filename("My Photo (1).JPG")
        'My-Photo-1.JPG'
        >>> sanitize_filename("???.png")
        'image.png'
    """
    base, extension = os.path.splitext(PurePath(filename).name)
    base = _UNSAFE_CHARS.sub("-", base)
    base = _DASH_RUNS.sub("-", base)
    base = base.strip("-")
    return f"{base or 'image'}{extension}"


def timestamp_ms() -> int:
    return int(time.time() * 1000)


class UploadStore:
    """Writes uploads and results into the configured directories."""

    def __init__(self, config: ClearmarkConfig) -> None:
        self.uploads_dir = Path(config.uploads_dir)
        self.processed_dir = Path(config.processed_dir)

    def save_upload(self, data: bytes, filename: str, stamp: int) -> Path:
        path = self.uploads_dir / f"{UPLOAD_PREFIX}{stamp}_{filename}"
        path.write_bytes(data)
        return path

    def save_processed(self, data: bytes, filename: str, stamp: int) -> Path:
        path = self.processed_dir / f"{PROCESSED_PREFIX}{stamp}_{filename}"
        path.write_bytes(data)
        return path

    def purge_stale_uploads(self, max_age_hours: int, now: float | None = None) -> int:
        """Delete raw uploads older than *max_age_hours*.

        Only files carrying the ``temp_`` prefix are considered.

        Args:
            max_age_hours: Retention period.  ``0`` disables purging.
            now: Reference time (seconds since the epoch); defaults to now.

        Returns:
            The number of files deleted.
        """
        if max_age_hours <= 0:
            return 0

        cutoff = (now if now is not None else time.time()) - max_age_hours * 3600
        removed = 0
        for path in self.uploads_dir.glob(f"{UPLOAD_PREFIX}*"):
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1

        if removed:
            logger.info("Purged %d stale upload(s) from %s", removed, self.uploads_dir)
        return removed
