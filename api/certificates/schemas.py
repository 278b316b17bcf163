"""
Response schemas for certificate lookup.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class CertificateRecordOut(BaseModel):
    name: str
    gender: str
    id_type: str = Field(..., serialization_alias="idType")
    id_number: str = Field(..., serialization_alias="idNumber")
    cert_numbers: list[str] = Field(..., serialization_alias="certNumbers")


class SearchResponse(BaseModel):
    success: bool
    data: list[CertificateRecordOut] | None = None
    message: str | None = None
