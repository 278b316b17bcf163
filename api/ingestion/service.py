"""
Ingestion "service layer".

This file contains logic that is independent of FastAPI's routing layer:
- Validate uploads
- Read file bytes with a size limit and stage them in the upload directory
- Validate rows, then write them in one transaction
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar
from uuid import uuid4

from fastapi import UploadFile

from core.db import ConnectionManager, DatabaseUnavailableError
from core.settings import Settings

from . import repository, spreadsheet, validation

DEFAULT_BATCH_SIZE = 50

ALLOWED_EXTENSIONS = set(spreadsheet.READERS)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSAFE_FILENAME_RE = re.compile(r"[^\w.\-]+")


class UploadError(ValueError):
    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class ImportWriteError(RuntimeError):
    pass


@dataclass(frozen=True)
class ImportSummary:
    processed: int
    inserted: int

    @property
    def skipped(self) -> int:
        return self.processed - self.inserted


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size <= 0:
        raise ValueError("batch size must be > 0")
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def import_rows(
    manager: ConnectionManager,
    rows: Sequence[Mapping[str, Any]],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ImportSummary:
    """
    Validate `rows` and insert them all-or-nothing.

    Existing (id_number, cert_number) pairs are skipped, not updated. Any
    write failure rolls the whole import back and raises `ImportWriteError`.
    """
    records = validation.validate_rows(rows)

    if not manager.is_available:
        raise DatabaseUnavailableError("Database is unavailable.")

    inserted = 0
    try:
        async with manager.acquire() as conn:
            async with conn.transaction():
                for batch in batched(records, batch_size):
                    inserted += await repository.insert_batch(conn, batch)
    except DatabaseUnavailableError:
        raise
    except Exception as e:
        logger.error("import_rolled_back rows=%s error=%s: %s", len(records), e.__class__.__name__, e)
        # Timeouts stringify to "".
        cause = str(e) or e.__class__.__name__
        raise ImportWriteError(f"Import failed and was rolled back: {cause}") from e

    summary = ImportSummary(processed=len(records), inserted=inserted)
    logger.info(
        "import_complete processed=%s inserted=%s skipped=%s",
        summary.processed,
        summary.inserted,
        summary.skipped,
    )
    return summary


def _file_ext(filename: str) -> str:
    return Path(filename).suffix.lower()


def validate_upload(file: UploadFile) -> str:
    """
    Return the normalized file extension if this upload is acceptable.

    We validate based on filename extension here because `content_type`
    is often missing or incorrect in practice.
    """
    if not file.filename:
        raise UploadError("Missing filename.")

    ext = _file_ext(file.filename)
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadError(f"Unsupported file type '{ext}'. Allowed: {sorted(ALLOWED_EXTENSIONS)}")

    return ext


async def read_upload_bytes(file: UploadFile, max_bytes: int) -> bytes:
    """
    Read the upload into memory, enforcing a maximum size.
    """
    chunk_size = 1024 * 1024  # 1 MiB
    buf = bytearray()

    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise UploadError(f"File too large. Max is {max_bytes} bytes.", status_code=413)

    if not buf:
        raise UploadError("Uploaded file is empty.")

    return bytes(buf)


def staging_path(upload_dir: Path, filename: str) -> Path:
    safe_name = _UNSAFE_FILENAME_RE.sub("_", Path(filename).name).strip("._") or "upload"
    return upload_dir / f"{int(time.time() * 1000)}-{uuid4().hex[:8]}-{safe_name}"


def _write_staged_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def remove_staged_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("staged_file_cleanup_failed path=%s", path, exc_info=True)


async def import_upload(manager: ConnectionManager, file: UploadFile, settings: Settings) -> ImportSummary:
    """
    High-level import of one uploaded spreadsheet.

    The staged copy in the upload directory is removed on every exit path.
    """
    validate_upload(file)
    data = await read_upload_bytes(file, max_bytes=settings.max_upload_bytes)

    path = staging_path(settings.upload_dir, file.filename or "")
    await asyncio.to_thread(_write_staged_file, path, data)
    try:
        rows = await asyncio.to_thread(spreadsheet.read_rows, path)
        logger.info("upload_parsed filename=%s rows=%s", file.filename, len(rows))
        return await import_rows(manager, rows, batch_size=settings.import_batch_size)
    finally:
        await asyncio.to_thread(remove_staged_file, path)
