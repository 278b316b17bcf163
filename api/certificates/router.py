"""
Certificate lookup endpoint.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from core.db import ConnectionManager
from core.dependencies import get_manager

from . import schemas, service

logger = logging.getLogger(__name__)

router = APIRouter()

NOT_FOUND_MESSAGE = "No matching certificate found."
UNAVAILABLE_MESSAGE = "Service temporarily unavailable, please try again later."
FAILED_MESSAGE = "Query failed, please try again later."


def _respond(payload: schemas.SearchResponse, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=payload.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.get("/api/search")
async def search(
    q: str = Query(..., min_length=1, max_length=100),
    manager: ConnectionManager = Depends(get_manager),
) -> JSONResponse:
    """
    Look up certificates by ID number or certificate number.
    """
    try:
        result = await service.lookup(manager, q)
    except Exception:
        logger.exception("search_failed")
        return _respond(
            schemas.SearchResponse(success=False, message=FAILED_MESSAGE),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if result.status is service.LookupStatus.UNAVAILABLE:
        return _respond(
            schemas.SearchResponse(success=False, message=UNAVAILABLE_MESSAGE),
            status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    if result.status is service.LookupStatus.NOT_FOUND:
        return _respond(schemas.SearchResponse(success=False, message=NOT_FOUND_MESSAGE))

    data = [schemas.CertificateRecordOut(**asdict(record)) for record in result.records]
    return _respond(schemas.SearchResponse(success=True, data=data))
