"""Assistance request model"""

from sqlalchemy import Column, ForeignKey, String, Text
from projectflow.models.base import BaseModel, JSONType


class AssistanceRequest(BaseModel):
    """
    Support ticket opened by a client against one of their projects.
    Rows are removed together with their project.
    """

    __tablename__ = "assistanceRequests"

    project_id = Column(
        "projectId", String(36), ForeignKey("projects.id"), nullable=False, index=True
    )
    client_uid = Column("clientUid", String(36), nullable=False, index=True)
    client_name = Column("clientName", String(255), nullable=False, default="")
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default="Aberto")  # Aberto, Em Andamento, Fechado
    response = Column(Text, nullable=False, default="")
    photos = Column(JSONType, nullable=False, default=list)

    def __repr__(self):
        return f"<AssistanceRequest(id={self.id}, project_id={self.project_id}, status={self.status})>"
