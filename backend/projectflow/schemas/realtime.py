"""Realtime change feed message schemas"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from projectflow.schemas.common import utc_now


class ChangeKind(str, Enum):
    """Kind of row change carried by a change event"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """
    A single committed row change on one table.

    `new` carries the full row for inserts and updates; `old` carries at least
    the primary key for deletes.
    """

    table: str = Field(..., min_length=1, description="Source table name")
    kind: ChangeKind = Field(..., description="INSERT, UPDATE or DELETE")
    new: Optional[Dict[str, Any]] = Field(None, description="Row after the change")
    old: Optional[Dict[str, Any]] = Field(None, description="Row before the change")
    committed_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def check_payload(self):
        """Inserts and updates need the new row, deletes need the old key"""
        if self.kind in (ChangeKind.INSERT, ChangeKind.UPDATE) and not self.new:
            raise ValueError(f"{self.kind.value} event requires a new row")
        if self.kind == ChangeKind.DELETE and not (self.old and self.old.get("id")):
            raise ValueError("DELETE event requires the old row id")
        return self

    @property
    def record_id(self) -> Optional[str]:
        row = self.old if self.kind == ChangeKind.DELETE else self.new
        return str(row["id"]) if row and row.get("id") is not None else None
