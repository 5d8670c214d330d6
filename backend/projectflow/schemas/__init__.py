"""Record schemas package"""

from .file import FileDescriptor, FileType, UploadBlob
from .profile import ProfileUpdate, Role, UserProfile
from .project import (
    PROJECT_STATUS_ORDER,
    Project,
    ProjectCreate,
    ProjectStatus,
    ProjectUpdate,
    can_set_delivery_date,
    progress_percentage,
)
from .assistance import ASSISTANCE_STATUS_ORDER, AssistanceRequest, AssistanceStatus
from .realtime import ChangeEvent, ChangeKind
from .auth import AuthChangeEvent, Session

__all__ = [
    "FileDescriptor",
    "FileType",
    "UploadBlob",
    "ProfileUpdate",
    "Role",
    "UserProfile",
    "PROJECT_STATUS_ORDER",
    "Project",
    "ProjectCreate",
    "ProjectStatus",
    "ProjectUpdate",
    "can_set_delivery_date",
    "progress_percentage",
    "ASSISTANCE_STATUS_ORDER",
    "AssistanceRequest",
    "AssistanceStatus",
    "ChangeEvent",
    "ChangeKind",
    "AuthChangeEvent",
    "Session",
]
