"""
One-time verification codes bound to an account
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..core.database import Base
from .account import utcnow

PURPOSE_EMAIL_VERIFICATION = "email_verification"
PURPOSE_ADMIN_LOGIN = "admin_login"


class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    code = Column(String(6), nullable=False)
    purpose = Column(String(32), default=PURPOSE_EMAIL_VERIFICATION, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)

    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    consumed_at = Column(DateTime, nullable=True)
    invalidated_at = Column(DateTime, nullable=True)

    account = relationship("Account", back_populates="verification_codes")

    def is_expired(self, now) -> bool:
        return now >= self.expires_at
