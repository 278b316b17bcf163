"""
Upload directory housekeeping.

Blocking filesystem calls; async callers run these through `asyncio.to_thread`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def purge_files_older_than(upload_dir: Path, cutoff: datetime) -> int | None:
    """
    Delete regular files modified before `cutoff`.

    Returns None when the directory does not exist. A file that cannot be
    inspected or removed is logged and skipped.
    """
    if not upload_dir.is_dir():
        return None

    cutoff_ts = cutoff.timestamp()
    deleted = 0
    for entry in upload_dir.iterdir():
        try:
            if not entry.is_file() or entry.stat().st_mtime >= cutoff_ts:
                continue
            entry.unlink()
            deleted += 1
        except OSError:
            logger.warning("file_purge_failed path=%s", entry, exc_info=True)
    return deleted


def describe_upload_dir(upload_dir: Path, *, now: datetime) -> dict[str, Any]:
    if not upload_dir.is_dir():
        return {"path": str(upload_dir), "exists": False, "count": 0, "files": []}

    files: list[dict[str, Any]] = []
    for entry in sorted(upload_dir.iterdir()):
        try:
            if not entry.is_file():
                continue
            stat = entry.stat()
        except OSError:
            continue
        modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        files.append(
            {
                "name": entry.name,
                "sizeBytes": stat.st_size,
                "modifiedAt": modified_at.isoformat(),
                "ageHours": round((now - modified_at).total_seconds() / 3600, 2),
            }
        )

    return {"path": str(upload_dir), "exists": True, "count": len(files), "files": files}
