"""Project model"""

from sqlalchemy import Column, Date, Numeric, String, Text
from projectflow.models.base import BaseModel, JSONType


class Project(BaseModel):
    """
    Project model representing a client's order moving through production stages.
    Uploaded files are embedded as a JSON list of file descriptors.
    """

    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    client_uid = Column("clientuid", String(36), nullable=False, index=True)
    status = Column(String(50), nullable=False, default="Pagamento Feito")
    price = Column(Numeric(12, 2), nullable=False, default=0)
    payment_condition = Column(Text, nullable=False, default="")
    delivery_date = Column(Date, nullable=True)
    files = Column(JSONType, nullable=False, default=list)

    def __repr__(self):
        return f"<Project(id={self.id}, name={self.name}, status={self.status})>"
