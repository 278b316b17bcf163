"""
Retention sweeper.

Runs once at startup and then on a fixed interval. Each sweep does two
independent jobs: delete certificate rows past the record retention window and
delete staged upload files past the file retention window. One job failing
never stops the other, and neither takes the process down.
"""

from __future__ import annotations

import asyncio
import calendar
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from core.db import ConnectionManager

from . import files, repository

logger = logging.getLogger(__name__)

DAY_S = 24 * 60 * 60


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def months_ago(moment: datetime, months: int) -> datetime:
    """
    Same wall-clock time `months` calendar months earlier, clamped to month end.
    """
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass
class SweepReport:
    started_at: datetime
    records_deleted: int | None = None
    files_deleted: int | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "startedAt": self.started_at.isoformat(),
            "recordsDeleted": self.records_deleted,
            "filesDeleted": self.files_deleted,
            "errors": list(self.errors),
        }


class RetentionSweeper:
    def __init__(
        self,
        manager: ConnectionManager,
        *,
        upload_dir: Path,
        record_retention_months: int = 3,
        file_retention_days: int = 7,
        interval_s: float = DAY_S,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._manager = manager
        self._upload_dir = upload_dir
        self._record_retention_months = record_retention_months
        self._file_retention = timedelta(days=file_retention_days)
        self._interval_s = interval_s
        self._clock = clock
        self._task: asyncio.Task | None = None
        self.last_report: SweepReport | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def record_cutoff(self, now: datetime | None = None) -> datetime:
        return months_ago(now or self._clock(), self._record_retention_months)

    def file_cutoff(self, now: datetime | None = None) -> datetime:
        return (now or self._clock()) - self._file_retention

    async def purge_records(self, now: datetime | None = None) -> int | None:
        """
        Returns the number of rows removed, or None if the database is unavailable.
        """
        if not self._manager.is_available:
            logger.info("record_purge_skipped reason=database_unavailable")
            return None

        cutoff = self.record_cutoff(now)
        async with self._manager.acquire() as conn:
            deleted = await repository.delete_created_before(conn, cutoff)
        logger.info("record_purge_complete deleted=%s cutoff=%s", deleted, cutoff.isoformat())
        return deleted

    async def purge_files(self, now: datetime | None = None) -> int | None:
        """
        Returns the number of files removed, or None if the directory is missing.
        """
        cutoff = self.file_cutoff(now)
        deleted = await asyncio.to_thread(files.purge_files_older_than, self._upload_dir, cutoff)
        if deleted is None:
            logger.info("file_purge_skipped reason=missing_dir path=%s", self._upload_dir)
        else:
            logger.info("file_purge_complete deleted=%s path=%s", deleted, self._upload_dir)
        return deleted

    async def sweep(self) -> SweepReport:
        report = SweepReport(started_at=self._clock())

        try:
            report.records_deleted = await self.purge_records(report.started_at)
        except Exception as e:
            logger.exception("record_purge_failed")
            report.errors.append(f"records: {e}")

        try:
            report.files_deleted = await self.purge_files(report.started_at)
        except Exception as e:
            logger.exception("file_purge_failed")
            report.errors.append(f"files: {e}")

        self.last_report = report
        return report

    async def _run(self) -> None:
        while True:
            await self.sweep()
            await asyncio.sleep(self._interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="retention-sweeper")
        logger.info("retention_sweeper_started interval_s=%s", self._interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("retention_sweeper_stopped")
