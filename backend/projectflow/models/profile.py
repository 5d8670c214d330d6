"""Profile model"""

from sqlalchemy import Column, String
from projectflow.database import Base
from projectflow.models.base import JSONType


class Profile(Base):
    """
    Profile of a portal user, keyed by the identity provider subject.
    Clients and admins share the table and are told apart by role.
    """

    __tablename__ = "clientes"

    id = Column(String(36), primary_key=True, nullable=False)
    role = Column(String(20), nullable=False, index=True)  # client, admin
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    contract = Column(JSONType, nullable=True)  # embedded file descriptor

    def __repr__(self):
        return f"<Profile(id={self.id}, email={self.email}, role={self.role})>"
