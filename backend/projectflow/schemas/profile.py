"""User profile schemas"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from projectflow.schemas.file import FileDescriptor


class Role(str, Enum):
    """Session role; decides which records a session may load"""
    CLIENT = "client"
    ADMIN = "admin"


class UserProfile(BaseModel):
    """
    Identity record stored in the `clientes` table.

    The id equals the identity provider's session subject. Role is fixed at
    creation time.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Identity provider subject")
    role: Role = Field(..., description="client or admin")
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Contact email")
    phone: Optional[str] = Field(None, description="Contact phone")
    contract: Optional[FileDescriptor] = Field(None, description="Signed contract file")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProfileUpdate(BaseModel):
    """Partial profile update (role cannot change after creation)"""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    contract: Optional[FileDescriptor] = None

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
