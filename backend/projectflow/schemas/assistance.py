"""Assistance request schemas"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from projectflow.schemas.common import ensure_utc
from projectflow.schemas.file import FileDescriptor


class AssistanceStatus(str, Enum):
    """Ticket status; admins may move between any two values"""
    OPEN = "Aberto"
    IN_PROGRESS = "Em Andamento"
    CLOSED = "Fechado"


ASSISTANCE_STATUS_ORDER: List[AssistanceStatus] = list(AssistanceStatus)


class AssistanceRequest(BaseModel):
    """Support ticket as stored in the `assistanceRequests` table"""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1)
    created_at: datetime
    project_id: str = Field(..., alias="projectId", description="Project the ticket is about")
    client_id: str = Field(..., alias="clientUid", description="Requesting client id")
    client_name: str = Field(default="", alias="clientName", description="Requester name at creation time")
    description: str = Field(default="", description="Problem description")
    status: AssistanceStatus = Field(default=AssistanceStatus.OPEN)
    response: str = Field(default="", description="Admin response")
    photos: List[FileDescriptor] = Field(default_factory=list)

    @field_validator("created_at", mode="after")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("photos", mode="before")
    @classmethod
    def default_photos(cls, v):
        return v or []

    @field_validator("response", mode="before")
    @classmethod
    def default_response(cls, v: Optional[str]) -> str:
        return v or ""
