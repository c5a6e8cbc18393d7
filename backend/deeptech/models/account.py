"""
Account model for DTUsers and Admins
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text
from sqlalchemy.orm import relationship

from ..core.database import Base

ROLE_ANNOTATOR = "annotator"
ROLE_ADMIN = "admin"

# Workflow statuses shared by annotatorStatus and microTaskerStatus
STATUS_PENDING = "pending"
STATUS_SUBMITTED = "submitted"
STATUS_VERIFIED = "verified"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
WORKFLOW_STATUSES = (
    STATUS_PENDING, STATUS_SUBMITTED, STATUS_VERIFIED, STATUS_APPROVED, STATUS_REJECTED
)

# Lifecycle states derived from the flags below
STATE_CREATED = "created"
STATE_EMAIL_VERIFIED = "email_verified"
STATE_PASSWORD_SET = "password_set"
STATE_OTP_PENDING = "otp_pending"
STATE_OTP_VERIFIED = "otp_verified"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_account_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=new_account_id)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    domains = Column(Text, default="")  # comma separated
    consent = Column(Boolean, default=False)

    password_hash = Column(String(255), nullable=True)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    has_set_password = Column(Boolean, default=False, nullable=False)

    role = Column(String(50), default=ROLE_ANNOTATOR, nullable=False)  # annotator, admin
    annotator_status = Column(String(20), default=STATUS_PENDING, nullable=False)
    micro_tasker_status = Column(String(20), default=STATUS_PENDING, nullable=False)

    password_reset_token_hash = Column(String(64), nullable=True, index=True)
    password_reset_expires_at = Column(DateTime, nullable=True)
    password_reset_attempts = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    verification_codes = relationship(
        "VerificationCode", back_populates="account", cascade="all, delete-orphan"
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def state(self) -> str:
        if self.is_admin:
            return STATE_OTP_VERIFIED if self.is_email_verified else STATE_OTP_PENDING
        if not self.is_email_verified:
            return STATE_CREATED
        if not self.has_set_password:
            return STATE_EMAIL_VERIFIED
        return STATE_PASSWORD_SET

    def __repr__(self):
        return f"<Account {self.id} {self.email} role={self.role} state={self.state}>"
