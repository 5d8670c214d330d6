"""Database models package"""

from projectflow.models.base import BaseModel
from projectflow.models.profile import Profile
from projectflow.models.project import Project
from projectflow.models.assistance_request import AssistanceRequest

# Export all models
__all__ = [
    "BaseModel",
    "Profile",
    "Project",
    "AssistanceRequest",
]
