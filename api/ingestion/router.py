"""
FastAPI router for the spreadsheet upload endpoint.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse

from core.db import ConnectionManager, DatabaseUnavailableError
from core.dependencies import get_manager, get_settings
from core.settings import Settings

from . import schemas, service, spreadsheet, validation

logger = logging.getLogger(__name__)

router = APIRouter()


def _respond(payload: schemas.UploadResponse, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


@router.post("/api/upload")
async def upload_certificates(
    file: UploadFile | None = File(default=None),
    manager: ConnectionManager = Depends(get_manager),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """
    Import certificate rows from an uploaded `.xlsx` or `.csv` file.

    The import is all-or-nothing; rows already stored are skipped.
    """
    if file is None:
        return _respond(
            schemas.UploadResponse(success=False, message="No file received."),
            status.HTTP_400_BAD_REQUEST,
        )

    try:
        summary = await service.import_upload(manager, file, settings)
    except service.UploadError as e:
        return _respond(schemas.UploadResponse(success=False, message=str(e)), e.status_code)
    except spreadsheet.SpreadsheetError as e:
        return _respond(
            schemas.UploadResponse(success=False, message=str(e)),
            status.HTTP_400_BAD_REQUEST,
        )
    except validation.RowValidationError as e:
        return _respond(
            schemas.UploadResponse(
                success=False,
                message=str(e),
                errors=e.problems[: validation.MAX_REPORTED_PROBLEMS],
            ),
            status.HTTP_400_BAD_REQUEST,
        )
    except DatabaseUnavailableError:
        return _respond(
            schemas.UploadResponse(
                success=False,
                message="Service temporarily unavailable, please try again later.",
            ),
            status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    except service.ImportWriteError as e:
        return _respond(
            schemas.UploadResponse(success=False, message=f"File processing failed: {e}"),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return _respond(
        schemas.UploadResponse(
            success=True,
            message=(
                f"Processed {summary.processed} rows "
                f"({summary.inserted} inserted, {summary.skipped} already present)."
            ),
            processed=summary.processed,
            inserted=summary.inserted,
            skipped=summary.skipped,
        )
    )
