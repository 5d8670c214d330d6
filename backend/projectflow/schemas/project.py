"""Project schemas"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from projectflow.schemas.common import ensure_utc
from projectflow.schemas.file import FileDescriptor, FileType


class ProjectStatus(str, Enum):
    """Production stages, in delivery order"""
    PAYMENT_MADE = "Pagamento Feito"
    MEASUREMENT_DONE = "Medida Fina Feita"
    TECH_DRAWINGS_APPROVED = "Caderno Técnico Aprovado"
    PRODUCTION_STARTED = "Produção Iniciada"
    DELIVERY_SCHEDULED = "Entrega Agendada"
    DELIVERY_MADE = "Entrega Feita"
    ASSEMBLY_FINISHED = "Montagem Finalizada"
    QUALITY_CONTROL = "Controle de Qualidade"
    COMPLETED = "Concluído"


PROJECT_STATUS_ORDER: List[ProjectStatus] = list(ProjectStatus)


def stage_index(status: ProjectStatus) -> int:
    """Position of a stage in PROJECT_STATUS_ORDER"""
    return PROJECT_STATUS_ORDER.index(ProjectStatus(status))


def progress_percentage(status: ProjectStatus) -> int:
    """Completion percentage shown on progress bars (0 for the first stage, 100 for the last)"""
    total_steps = len(PROJECT_STATUS_ORDER) - 1
    return round(stage_index(status) / total_steps * 100)


def can_set_delivery_date(status: ProjectStatus) -> bool:
    """Delivery dates only exist once the fine measurement has been taken"""
    return stage_index(status) >= stage_index(ProjectStatus.MEASUREMENT_DONE)


class ProjectBase(BaseModel):
    """Base project schema"""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=255, description="Project name")
    description: str = Field(default="", description="Project description")
    client_id: str = Field(..., min_length=1, alias="clientuid", description="Owning client id")
    status: ProjectStatus = Field(default=ProjectStatus.PAYMENT_MADE, description="Current stage")
    price: Decimal = Field(default=Decimal("0"), ge=0, description="Agreed price")
    payment_condition: str = Field(default="", description="Payment terms, free text")
    delivery_date: Optional[date] = Field(None, description="Planned delivery date")


class ProjectCreate(ProjectBase):
    """Project creation schema"""

    @model_validator(mode="after")
    def check_delivery_date_stage(self):
        """Reject a delivery date on projects still before the measurement stage"""
        if self.delivery_date is not None and not can_set_delivery_date(self.status):
            raise ValueError(
                f"Delivery date requires status '{ProjectStatus.MEASUREMENT_DONE.value}' or later"
            )
        return self

    def to_row(self) -> Dict[str, Any]:
        row = self.model_dump(by_alias=True)
        row["status"] = self.status.value
        return row


class ProjectUpdate(BaseModel):
    """Project update schema - all fields optional"""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1, max_length=255, description="Project name")
    description: Optional[str] = Field(None, description="Project description")
    client_id: Optional[str] = Field(None, alias="clientuid", description="Owning client id")
    status: Optional[ProjectStatus] = Field(None, description="Current stage")
    price: Optional[Decimal] = Field(None, ge=0, description="Agreed price")
    payment_condition: Optional[str] = Field(None, description="Payment terms, free text")
    delivery_date: Optional[date] = Field(None, description="Planned delivery date")

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        """Only delivery_date may be cleared"""
        nulled = sorted(
            name for name in self.model_fields_set
            if name != "delivery_date" and getattr(self, name) is None
        )
        if nulled:
            raise ValueError(f"Fields cannot be cleared: {', '.join(nulled)}")
        return self

    def to_row(self) -> Dict[str, Any]:
        """Only the fields that were explicitly set"""
        row = self.model_dump(by_alias=True, exclude_unset=True)
        if self.status is not None:
            row["status"] = self.status.value
        return row


class Project(ProjectBase):
    """Project as stored in the `projects` table"""

    id: str = Field(..., min_length=1)
    created_at: datetime
    files: List[FileDescriptor] = Field(default_factory=list)

    @field_validator("created_at", mode="after")
    @classmethod
    def normalize_created_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("files", mode="before")
    @classmethod
    def default_files(cls, v):
        return v or []

    @property
    def progress(self) -> int:
        return progress_percentage(self.status)

    @property
    def photos(self) -> List[FileDescriptor]:
        return [f for f in self.files if f.type == FileType.PHOTO]

    @property
    def documents(self) -> List[FileDescriptor]:
        """Files that are neither photos nor contracts"""
        return [f for f in self.files if f.type not in (FileType.PHOTO, FileType.CONTRACT)]
