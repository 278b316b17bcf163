"""
Status, admin and diagnostic endpoints.

Admin endpoints need `?secret=<ADMIN_SECRET>`; diagnostics need
DEBUG_ENDPOINTS=true. Both answer 403 otherwise.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from core.db import ConnectionManager
from core.dependencies import (
    get_manager,
    get_settings,
    get_sweeper,
    require_admin_secret,
    require_debug_mode,
)
from core.settings import Settings

from . import diagnostics, files, repository
from .sweeper import RetentionSweeper

router = APIRouter()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@router.get("/api/status")
async def service_status(manager: ConnectionManager = Depends(get_manager)) -> dict:
    return {
        "status": "running",
        "databaseAvailable": manager.is_available,
        "time": _utc_now().isoformat(),
    }


@router.api_route("/api/cleanup", methods=["GET", "POST"], dependencies=[Depends(require_admin_secret)])
async def run_cleanup(sweeper: RetentionSweeper = Depends(get_sweeper)) -> dict:
    """
    Run one retention sweep now.
    """
    report = await sweeper.sweep()
    return {"success": not report.errors, **report.to_dict()}


@router.get("/api/stats", dependencies=[Depends(require_admin_secret)])
async def record_stats(
    manager: ConnectionManager = Depends(get_manager),
    sweeper: RetentionSweeper = Depends(get_sweeper),
) -> dict:
    cutoff = sweeper.record_cutoff()
    last_report = sweeper.last_report.to_dict() if sweeper.last_report is not None else None

    if not manager.is_available:
        return {
            "success": False,
            "databaseAvailable": False,
            "message": "Database unavailable.",
            "lastSweep": last_report,
        }

    row = await repository.record_stats(manager, cutoff=cutoff)
    return {
        "success": True,
        "databaseAvailable": True,
        "totalRecords": int(row.get("total") or 0),
        "expiredRecords": int(row.get("expired") or 0),
        "holders": int(row.get("holders") or 0),
        "oldestCreatedAt": _iso(row.get("oldest")),
        "newestCreatedAt": _iso(row.get("newest")),
        "retentionCutoff": cutoff.isoformat(),
        "lastSweep": last_report,
    }


@router.get("/api/file-status", dependencies=[Depends(require_admin_secret)])
async def file_status(settings: Settings = Depends(get_settings)) -> dict:
    listing = await asyncio.to_thread(files.describe_upload_dir, settings.upload_dir, now=_utc_now())
    return {"success": True, "retentionDays": settings.file_retention_days, **listing}


@router.get("/api/test-db-connection", dependencies=[Depends(require_debug_mode)])
async def test_db_connection(manager: ConnectionManager = Depends(get_manager)) -> dict:
    return await diagnostics.probe_database(manager)


@router.get("/api/test-network", dependencies=[Depends(require_debug_mode)])
async def test_network(manager: ConnectionManager = Depends(get_manager)) -> dict:
    host, port = manager.settings.target()
    return await diagnostics.probe_network(host, port, timeout_s=manager.settings.connect_timeout_s)
