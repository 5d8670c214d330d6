"""Authentication session schemas"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AuthChangeEvent(str, Enum):
    """Auth-state transitions reported to listeners"""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


class Session(BaseModel):
    """Authenticated session derived from a validated access token"""
    access_token: str = Field(..., description="JWT access token")
    user_id: str = Field(..., description="Token subject; equals the profile id")
    email: Optional[str] = Field(None, description="Email claim, when present")
    expires_at: datetime = Field(..., description="Token expiration time (UTC)")
