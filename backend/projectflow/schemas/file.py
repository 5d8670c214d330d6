"""Stored file schemas"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from projectflow.schemas.common import ensure_utc, utc_now


class FileType(str, Enum):
    """File classification inferred from the MIME type at upload time"""
    PHOTO = "photo"
    CONTRACT = "contract"
    REPORT = "report"


class FileDescriptor(BaseModel):
    """
    Metadata for a stored blob, embedded by value in its owning record.

    The id is the storage path and doubles as the deletion key.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Storage path of the blob")
    name: str = Field(..., description="Original display name")
    url: str = Field(..., description="Public URL of the blob")
    type: FileType = Field(..., description="File classification")
    uploaded_at: datetime = Field(default_factory=utc_now, alias="uploadedAt")

    @field_validator("uploaded_at", mode="after")
    @classmethod
    def normalize_uploaded_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def to_row(self) -> Dict[str, Any]:
        """JSON-ready representation stored inside JSON columns"""
        return self.model_dump(mode="json", by_alias=True)


class UploadBlob(BaseModel):
    """Raw file handed to the upload adapter"""

    name: str = Field(..., min_length=1, description="Original file name")
    content_type: str = Field(default="application/octet-stream", description="Declared MIME type")
    data: bytes = Field(..., description="File contents")

    @property
    def size(self) -> int:
        return len(self.data)
