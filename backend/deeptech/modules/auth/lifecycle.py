"""
Account lifecycle: creation, email verification, password setup, login and recovery.

Every account moves through the same gates before it can log in:

    DTUser: created -> email_verified -> password_set
    Admin:  otp_pending -> otp_verified   (password is chosen at creation)

State-changing operations on one account are serialized with a per-email
lock, and the two exactly-once transitions (consuming a code, setting the
first password) are conditional UPDATEs so they also hold across processes.

Session queries and bcrypt hashing are blocking, so they run in the
threadpool; only the email sends are awaited on the event loop.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Iterable, Optional

from fastapi import Depends
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core import config
from ...core.database import get_db
from ...core.exceptions import (
    ValidationError, ConflictError, NotFoundError, UnverifiedError, PasswordNotSetError,
    MismatchError, InvalidCredentialsError, NotificationError,
)
from ...core.locks import KeyedLock, account_locks
from ...core.mail import Notifier, get_notifier, send_safely
from ...core.security import (
    get_password_hash, verify_password, create_account_token,
    generate_reset_token, hash_reset_token,
)
from ...models.account import (
    Account, ROLE_ADMIN, ROLE_ANNOTATOR, STATUS_APPROVED, WORKFLOW_STATUSES,
    normalize_email, utcnow,
)
from ...models.verification import PURPOSE_EMAIL_VERIFICATION, PURPOSE_ADMIN_LOGIN
from .codes import VerificationCodeStore

logger = logging.getLogger(__name__)

ADMIN_DOMAINS = "Administration,Management"
STATUS_TRACKS = {
    "annotator": "annotator_status",
    "microTasker": "micro_tasker_status",
}


@dataclass
class CreationResult:
    account: Account
    email_sent: bool


@dataclass
class VerificationResult:
    account: Account
    already_verified: bool = False
    token: Optional[str] = None


@dataclass
class LoginResult:
    account: Account
    token: str


@dataclass
class ResendResult:
    account: Account
    already_verified: bool = False
    email_sent: bool = False


def is_admin_email(email: str) -> bool:
    email = normalize_email(email)
    return email.endswith(config.ADMIN_EMAIL_DOMAIN) or email in config.ADMIN_EMAILS


class AccountLifecycle:
    def __init__(
        self,
        db: Session,
        notifier: Notifier,
        clock: Callable = utcnow,
        locks: KeyedLock = account_locks,
        rollback_on_notification_failure: bool = config.ROLLBACK_ON_NOTIFICATION_FAILURE,
        resend_on_unverified_login: bool = config.RESEND_ON_UNVERIFIED_LOGIN,
    ):
        self.db = db
        self.notifier = notifier
        self.clock = clock
        self.locks = locks
        self.codes = VerificationCodeStore(db, clock=clock)
        self.rollback_on_notification_failure = rollback_on_notification_failure
        self.resend_on_unverified_login = resend_on_unverified_login
        # a Session is not thread-safe: one worker call at a time
        self._session_guard = KeyedLock()

    async def _in_session(self, fn, *args):
        """Run blocking Session work in the threadpool"""
        async with self._session_guard.hold("session"):
            return await run_in_threadpool(fn, *args)

    # ============ LOOKUPS ============
    def find_by_email(self, email: str) -> Optional[Account]:
        return self.db.query(Account).filter(Account.email == normalize_email(email)).first()

    def find_by_id(self, account_id: str) -> Optional[Account]:
        return self.db.query(Account).filter(Account.id == account_id).first()

    def _require_by_id(self, account_id: str) -> Account:
        account = self.find_by_id(account_id)
        if not account:
            raise NotFoundError("User not found")
        return account

    # ============ CODE DISPATCH ============
    async def _issue_and_send(self, account: Account, purpose: str = PURPOSE_EMAIL_VERIFICATION) -> bool:
        async with self.locks.hold(account.email):
            record = await self._in_session(self.codes.issue, account, purpose)
        return await send_safely(
            self.notifier.send_verification(account, record.code),
            f"verification email to {account.email}",
        )

    def _insert(self, account: Account) -> None:
        if self.find_by_email(account.email):
            raise ConflictError("User already exists with this email")
        self.db.add(account)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("User already exists with this email")
        self.db.refresh(account)

    def _discard(self, account: Account) -> None:
        self.db.delete(account)
        self.db.commit()

    async def _insert_and_notify(self, account: Account) -> CreationResult:
        async with self.locks.hold(account.email):
            await self._in_session(self._insert, account)
        logger.info(f"Created {account.role} account {account.id} for {account.email}")

        email_sent = await self._issue_and_send(account)
        if not email_sent and self.rollback_on_notification_failure:
            logger.warning(f"Rolling back account {account.id}: verification email was not sent")
            await self._in_session(self._discard, account)
            raise NotificationError("Account was not created because the verification email could not be sent")
        return CreationResult(account=account, email_sent=email_sent)

    # ============ CREATION ============
    async def create_dtuser(
        self,
        full_name: str,
        email: str,
        phone: Optional[str] = None,
        domains: Iterable[str] = (),
        consent: bool = False,
    ) -> CreationResult:
        """Register an annotator candidate and send the verification email"""
        account = Account(
            email=normalize_email(email),
            full_name=full_name.strip(),
            phone=phone,
            domains=",".join(d.strip() for d in domains if d and d.strip()),
            consent=consent,
            role=ROLE_ANNOTATOR,
            is_email_verified=False,
            has_set_password=False,
        )
        return await self._insert_and_notify(account)

    async def create_admin(
        self,
        full_name: str,
        email: str,
        phone: Optional[str],
        password: str,
        confirm_password: str,
        admin_key: str,
    ) -> CreationResult:
        """
        Register an admin. The creation key and the email policy are checked
        before anything is stored or any code is issued.
        """
        if not secrets.compare_digest((admin_key or "").encode(), config.ADMIN_CREATION_KEY.encode()):
            logger.warning(f"Admin creation rejected for {email}: invalid admin key")
            raise ValidationError("Invalid admin creation key")
        if not is_admin_email(email):
            logger.warning(f"Admin creation rejected for {email}: email domain not allowed")
            raise ValidationError("Invalid admin email domain")
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        account = Account(
            email=normalize_email(email),
            full_name=full_name.strip(),
            phone=phone,
            domains=ADMIN_DOMAINS,
            role=ROLE_ADMIN,
            password_hash=await run_in_threadpool(get_password_hash, password),
            has_set_password=True,
            is_email_verified=False,
            annotator_status=STATUS_APPROVED,
            micro_tasker_status=STATUS_APPROVED,
        )
        return await self._insert_and_notify(account)

    # ============ VERIFICATION ============
    def _mark_verified(self, account: Account) -> bool:
        self.db.refresh(account)
        if account.is_email_verified:
            return False
        account.is_email_verified = True
        self.codes.consume_open(account)
        self.db.commit()
        self.db.refresh(account)
        return True

    def _verify_with_code(self, account: Account, code: str) -> bool:
        """True when this call verified the account, False when it already was"""
        self.db.refresh(account)
        if account.is_email_verified:
            return False

        record = self.codes.check(account, code)
        if not self.codes.consume(record):
            self.db.refresh(account)
            if account.is_email_verified:
                return False
            raise NotFoundError("Verification code is no longer valid. Please request a new one.")

        account.is_email_verified = True
        self.db.commit()
        self.db.refresh(account)
        return True

    async def verify_email(self, account_id: str, email: str) -> VerificationResult:
        """Link-based verification: the email in the link must belong to the account"""
        account = await self._in_session(self._require_by_id, account_id)
        if normalize_email(email) != account.email:
            logger.warning(f"Verification link email mismatch for account {account_id}")
            raise MismatchError("Email does not match this account")

        async with self.locks.hold(account.email):
            verified_now = await self._in_session(self._mark_verified, account)
        if not verified_now:
            return VerificationResult(account=account, already_verified=True)

        logger.info(f"Email verified via link for {account.email}")
        return VerificationResult(account=account)

    async def verify_otp(self, email: str, code: str) -> VerificationResult:
        """Code-based verification. A fresh success also returns a session token."""
        account = await self._in_session(self.find_by_email, email)
        if not account:
            raise NotFoundError("Account not found")

        async with self.locks.hold(account.email):
            verified_now = await self._in_session(self._verify_with_code, account, code)
        if not verified_now:
            return VerificationResult(account=account, already_verified=True)

        logger.info(f"Email verified via code for {account.email}")
        return VerificationResult(account=account, token=create_account_token(account))

    async def resend_verification(self, email: str) -> ResendResult:
        account = await self._in_session(self.find_by_email, email)
        if not account:
            raise NotFoundError("User not found")
        if account.is_email_verified:
            logger.info(f"Resend skipped: {account.email} is already verified")
            return ResendResult(account=account, already_verified=True)
        email_sent = await self._issue_and_send(account)
        return ResendResult(account=account, email_sent=email_sent)

    # ============ PASSWORDS ============
    def _set_first_password(self, account: Account, password: str, confirm_password: str) -> None:
        self.db.refresh(account)
        if not account.is_email_verified:
            raise UnverifiedError("Please verify your email before setting a password")
        if account.has_set_password:
            raise ConflictError("Password has already been set for this account")
        if password != confirm_password:
            raise ValidationError("Passwords do not match")

        password_hash = get_password_hash(password)
        updated = self.db.query(Account).filter(
            Account.id == account.id,
            Account.has_set_password.is_(False),
        ).update(
            {
                Account.password_hash: password_hash,
                Account.has_set_password: True,
                Account.updated_at: self.clock(),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(account)
        if updated != 1:
            raise ConflictError("Password has already been set for this account")

    def _change_password(
        self, account: Account, old_password: str, new_password: str, confirm_new_password: str
    ) -> None:
        self.db.refresh(account)
        if not account.has_set_password or not verify_password(old_password, account.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")
        if new_password != confirm_new_password:
            raise ValidationError("New passwords do not match")
        if new_password == old_password:
            raise ValidationError("New password must be different from the current password")
        account.password_hash = get_password_hash(new_password)
        self.db.commit()
        self.db.refresh(account)

    async def setup_password(
        self, account_id: str, email: str, password: str, confirm_password: str
    ) -> Account:
        """One-time password setup after the email is verified"""
        account = await self._in_session(self._require_by_id, account_id)
        if normalize_email(email) != account.email:
            raise MismatchError("Email does not match this account")

        async with self.locks.hold(account.email):
            await self._in_session(self._set_first_password, account, password, confirm_password)

        logger.info(f"Password set up for {account.email}")
        return account

    async def reset_password(
        self, account: Account, old_password: str, new_password: str, confirm_new_password: str
    ) -> bool:
        """Change the password of a logged-in account. Returns whether the notice was sent."""
        async with self.locks.hold(account.email):
            await self._in_session(
                self._change_password, account, old_password, new_password, confirm_new_password
            )

        logger.info(f"Password changed for {account.email}")
        return await send_safely(
            self.notifier.send_password_changed(account), f"password change notice to {account.email}"
        )

    # ============ LOGIN ============
    async def login(self, email: str, password: str, admin: bool = False) -> LoginResult:
        """Each role logs in through its own door: admins with admin=True, DTUsers without."""
        account = await self._in_session(self.find_by_email, email)
        if not account or account.is_admin != admin:
            await run_in_threadpool(verify_password, password, None)
            logger.warning(f"Login rejected for {normalize_email(email)}: no matching account")
            raise InvalidCredentialsError()

        if not account.is_email_verified:
            email_sent = False
            if self.resend_on_unverified_login:
                purpose = PURPOSE_ADMIN_LOGIN if account.is_admin else PURPOSE_EMAIL_VERIFICATION
                email_sent = await self._issue_and_send(account, purpose)
            logger.warning(f"Login rejected for {account.email}: email not verified")
            if account.is_admin:
                raise UnverifiedError("OTP verification required", otpRequired=True, emailSent=email_sent)
            raise UnverifiedError(emailSent=email_sent)

        if not account.has_set_password:
            logger.info(f"Login blocked for {account.email}: password setup required")
            raise PasswordNotSetError(userId=account.id, requiresPasswordSetup=True)

        if not await run_in_threadpool(verify_password, password, account.password_hash):
            logger.warning(f"Login rejected for {account.email}: wrong password")
            raise InvalidCredentialsError()

        logger.info(f"{account.role} {account.email} logged in")
        return LoginResult(account=account, token=create_account_token(account))

    # ============ PASSWORD RECOVERY ============
    def _store_reset_token(self, account: Account, token: str) -> None:
        self.db.refresh(account)
        now = self.clock()
        recent = (
            account.password_reset_expires_at is not None
            and account.password_reset_expires_at > now - timedelta(hours=1)
        )
        if not recent:
            account.password_reset_attempts = 0
        if account.password_reset_attempts >= config.PASSWORD_RESET_MAX_ATTEMPTS:
            raise ValidationError("Too many password reset attempts. Please try again later.")

        account.password_reset_token_hash = hash_reset_token(token)
        account.password_reset_expires_at = now + timedelta(minutes=config.PASSWORD_RESET_TTL_MINUTES)
        account.password_reset_attempts += 1
        self.db.commit()
        self.db.refresh(account)

    def _clear_reset_token(self, account: Account) -> None:
        account.password_reset_token_hash = None
        account.password_reset_expires_at = None
        self.db.commit()
        self.db.refresh(account)

    def _apply_reset(self, account: Account, token: str, password: str) -> None:
        self.db.refresh(account)
        # token may have been used while we waited
        if account.password_reset_token_hash != hash_reset_token(token):
            raise ValidationError("Password reset token is invalid or has expired")
        account.password_hash = get_password_hash(password)
        account.has_set_password = True
        account.password_reset_token_hash = None
        account.password_reset_expires_at = None
        account.password_reset_attempts = 0
        self.db.commit()
        self.db.refresh(account)

    async def forgot_password(self, email: str) -> bool:
        """
        Start password recovery. Unknown emails get the same outcome as known
        ones, so the caller can always answer generically.
        """
        account = await self._in_session(self.find_by_email, email)
        if not account:
            logger.info(f"Password reset requested for unknown email {normalize_email(email)}")
            return False
        if not account.has_set_password or not account.password_hash:
            raise ValidationError(
                "This account does not have a password set. Please complete your registration first."
            )

        token = generate_reset_token()
        async with self.locks.hold(account.email):
            await self._in_session(self._store_reset_token, account, token)

        sent = await send_safely(
            self.notifier.send_password_reset(account, token), f"password reset email to {account.email}"
        )
        if not sent:
            await self._in_session(self._clear_reset_token, account)
        return sent

    def verify_reset_token(self, token: str) -> Account:
        account = self.db.query(Account).filter(
            Account.password_reset_token_hash == hash_reset_token(token or ""),
            Account.password_reset_expires_at > self.clock(),
        ).first()
        if not account:
            raise ValidationError("Password reset token is invalid or has expired")
        return account

    async def reset_password_with_token(self, token: str, password: str, confirm_password: str) -> Account:
        if password != confirm_password:
            raise ValidationError("Passwords do not match")
        account = await self._in_session(self.verify_reset_token, token)

        async with self.locks.hold(account.email):
            await self._in_session(self._apply_reset, account, token, password)

        logger.info(f"Password reset via token for {account.email}")
        await send_safely(
            self.notifier.send_password_changed(account), f"password reset confirmation to {account.email}"
        )
        return account

    # ============ WORKFLOW STATUS ============
    def _set_status(self, account: Account, track: str, status: str) -> None:
        self.db.refresh(account)
        setattr(account, STATUS_TRACKS[track], status)
        self.db.commit()
        self.db.refresh(account)

    async def set_workflow_status(self, account_id: str, track: str, status: str):
        """Move a DTUser along the annotator or micro-tasker track. Returns (account, email_sent)."""
        if track not in STATUS_TRACKS:
            raise ValidationError(f"Unknown status track '{track}'", allowed=list(STATUS_TRACKS))
        if status not in WORKFLOW_STATUSES:
            raise ValidationError(f"Unknown status '{status}'", allowed=list(WORKFLOW_STATUSES))

        account = await self._in_session(self._require_by_id, account_id)
        if account.is_admin:
            raise ValidationError("Admin accounts have no application status")

        async with self.locks.hold(account.email):
            await self._in_session(self._set_status, account, track, status)

        logger.info(f"{track} status of {account.email} set to {status}")
        email_sent = await send_safely(
            self.notifier.send_status_update(account, track, status),
            f"status update to {account.email}",
        )
        return account, email_sent


def get_lifecycle(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> AccountLifecycle:
    return AccountLifecycle(db, notifier)
