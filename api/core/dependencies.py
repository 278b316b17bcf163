"""
FastAPI dependencies for process-wide objects stored on `app.state`.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, Query, Request, status

from .settings import Settings

if TYPE_CHECKING:
    from maintenance.sweeper import RetentionSweeper

    from .db import ConnectionManager


def get_settings(request: Request) -> Settings:
    return request.app.state.settings  # type: ignore[no-any-return]


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.connection_manager  # type: ignore[no-any-return]


def get_sweeper(request: Request) -> RetentionSweeper:
    return request.app.state.sweeper  # type: ignore[no-any-return]


def require_admin_secret(
    secret: str = Query(default=""),
    settings: Settings = Depends(get_settings),
) -> None:
    # An unset ADMIN_SECRET keeps admin endpoints closed.
    expected = settings.admin_secret
    if not expected or not secrets.compare_digest(secret.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden.")


def require_debug_mode(settings: Settings = Depends(get_settings)) -> None:
    if not settings.debug_endpoints:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Debug endpoints are disabled.")
