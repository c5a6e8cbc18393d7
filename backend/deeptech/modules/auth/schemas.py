"""
Auth schemas for request/response validation.

Field names are snake_case in Python and camelCase on the wire.
"""
from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, BeforeValidator, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ...core.config import PASSWORD_MIN_LENGTH, OTP_LENGTH


def _clean_email(value):
    if isinstance(value, str):
        return value.strip().lower()
    return value


NormalizedEmail = Annotated[EmailStr, BeforeValidator(_clean_email)]


def _reject_nul(value: str) -> str:
    if "\x00" in value:
        raise ValueError("Password must not contain NUL characters")
    return value


# bcrypt cannot hash NUL bytes
PasswordStr = Annotated[str, AfterValidator(_reject_nul)]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DTUserCreate(CamelModel):
    full_name: str = Field(min_length=2, max_length=100)
    email: NormalizedEmail
    phone: Optional[str] = Field(default=None, max_length=32)
    domains: List[str] = []
    consent: bool = False


class EmailRequest(CamelModel):
    email: NormalizedEmail


class OtpVerification(CamelModel):
    """Accepts the code as either `otp` or `verificationCode`"""
    email: NormalizedEmail
    otp: Optional[str] = None
    verification_code: Optional[str] = None

    @model_validator(mode="after")
    def require_code(self):
        code = self.otp or self.verification_code
        if not code:
            raise ValueError("otp or verificationCode is required")
        code = code.strip()
        if len(code) != OTP_LENGTH or not (code.isascii() and code.isdigit()):
            raise ValueError(f"Verification code must be {OTP_LENGTH} digits")
        return self

    @property
    def code(self) -> str:
        return (self.otp or self.verification_code).strip()


class PasswordSetup(CamelModel):
    user_id: str
    email: NormalizedEmail
    password: PasswordStr = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: PasswordStr


class UserLogin(CamelModel):
    email: NormalizedEmail
    password: PasswordStr = Field(min_length=1)


class PasswordChange(CamelModel):
    old_password: PasswordStr = Field(min_length=1)
    new_password: PasswordStr = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_new_password: PasswordStr


class PasswordResetWithToken(CamelModel):
    token: str = Field(min_length=1)
    password: PasswordStr = Field(min_length=PASSWORD_MIN_LENGTH)
    confirm_password: PasswordStr


class AccountResponse(CamelModel):
    id: str
    email: str
    full_name: str
    phone: Optional[str] = None
    domains: List[str] = []
    role: str
    state: str
    is_email_verified: bool
    has_set_password: bool
    annotator_status: str
    micro_tasker_status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("domains", mode="before")
    @classmethod
    def split_domains(cls, value):
        if isinstance(value, str):
            return [d for d in value.split(",") if d]
        return value or []


def account_payload(account) -> dict:
    return AccountResponse.model_validate(account).model_dump(by_alias=True, mode="json")


def token_envelope(message: str, token: str, account, key: str = "user") -> dict:
    """Login-style response; the token is repeated under _usrinfo for older clients"""
    return {
        "success": True,
        "message": message,
        "_usrinfo": {"data": token},
        "token": token,
        key: account_payload(account),
    }
