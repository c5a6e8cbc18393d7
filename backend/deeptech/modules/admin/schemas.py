"""
Admin schemas for request validation
"""
from typing import Optional

from pydantic import Field

from ...core.config import PASSWORD_MIN_LENGTH
from ..auth.schemas import CamelModel, NormalizedEmail, PasswordStr


class AdminCreate(CamelModel):
    full_name: str = Field(min_length=2, max_length=100)
    email: NormalizedEmail
    phone: Optional[str] = Field(default=None, max_length=32)
    password: PasswordStr = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: PasswordStr
    admin_key: str = Field(min_length=1)


class StatusDecision(CamelModel):
    track: str = "annotator"  # annotator, microTasker
