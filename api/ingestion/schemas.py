"""
Response schema for the upload endpoint.
"""

from __future__ import annotations

from pydantic import BaseModel


class UploadResponse(BaseModel):
    success: bool
    message: str
    processed: int | None = None
    inserted: int | None = None
    skipped: int | None = None
    errors: list[str] | None = None
