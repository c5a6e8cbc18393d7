"""
Verification code store: issue, look up, check and consume one-time codes
"""
import logging
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ...core.config import OTP_TTL_MINUTES, OTP_MAX_ATTEMPTS
from ...core.exceptions import NotFoundError, ExpiredError, MismatchError
from ...core.security import generate_otp, codes_match
from ...models.account import Account, utcnow
from ...models.verification import VerificationCode

logger = logging.getLogger(__name__)


class VerificationCodeStore:
    """
    Persistent code store keyed by account.

    At most one code per account is active: issuing a code invalidates the
    previous ones, and expiry is enforced whenever a code is read.
    """

    def __init__(
        self,
        db: Session,
        clock: Callable = utcnow,
        ttl: timedelta = timedelta(minutes=OTP_TTL_MINUTES),
        max_attempts: int = OTP_MAX_ATTEMPTS,
    ):
        self.db = db
        self.clock = clock
        self.ttl = ttl
        self.max_attempts = max_attempts

    def _open_codes(self, account: Account):
        return self.db.query(VerificationCode).filter(
            VerificationCode.account_id == account.id,
            VerificationCode.consumed_at.is_(None),
            VerificationCode.invalidated_at.is_(None),
        )

    def issue(self, account: Account, purpose: str) -> VerificationCode:
        now = self.clock()
        superseded = self._open_codes(account).update(
            {VerificationCode.invalidated_at: now}, synchronize_session=False
        )
        record = VerificationCode(
            account_id=account.id,
            email=account.email,
            code=generate_otp(),
            purpose=purpose,
            issued_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        logger.info(
            f"Issued {purpose} code for {account.email} "
            f"(expires {record.expires_at.isoformat()}, superseded {superseded})"
        )
        return record

    def latest_open(self, account: Account) -> Optional[VerificationCode]:
        return self._open_codes(account).order_by(VerificationCode.id.desc()).first()

    def check(self, account: Account, supplied: str) -> VerificationCode:
        """Return the matching open code or raise NotFound/Expired/Mismatch."""
        now = self.clock()
        record = self.latest_open(account)
        if record is None:
            logger.warning(f"No pending verification code for {account.email}")
            raise NotFoundError("Verification code not found. Please request a new one.")

        if record.is_expired(now):
            record.invalidated_at = now
            self.db.commit()
            logger.warning(f"Expired verification code presented for {account.email}")
            raise ExpiredError("Verification code has expired. Please request a new one.")

        if not codes_match(supplied, record.code):
            record.attempts += 1
            remaining = max(self.max_attempts - record.attempts, 0)
            if remaining == 0:
                record.invalidated_at = now
            self.db.commit()
            logger.warning(f"Wrong verification code for {account.email} ({remaining} attempts left)")
            raise MismatchError("Invalid verification code", attemptsRemaining=remaining)

        return record

    def consume(self, record: VerificationCode) -> bool:
        """Atomically mark a code used. Only one caller can win for a given code."""
        won = self.db.query(VerificationCode).filter(
            VerificationCode.id == record.id,
            VerificationCode.consumed_at.is_(None),
            VerificationCode.invalidated_at.is_(None),
        ).update({VerificationCode.consumed_at: self.clock()}, synchronize_session=False)
        self.db.commit()
        self.db.refresh(record)
        return won == 1

    def consume_open(self, account: Account) -> int:
        """Mark every open code of the account used; the caller commits"""
        return self._open_codes(account).update(
            {VerificationCode.consumed_at: self.clock()}, synchronize_session=False
        )
