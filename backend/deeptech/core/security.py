"""
Security utilities: password hashing, JWT tokens, one-time codes, auth dependencies
"""
import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import PasswordValueError
from sqlalchemy.orm import Session

from .config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, BCRYPT_ROUNDS, OTP_LENGTH
from .database import get_db
from .exceptions import UnauthorizedError, ForbiddenError
from ..models.account import Account

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)

# Bearer token scheme
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify a password against a hash; runs a dummy hash when there is none"""
    if not hashed_password:
        pwd_context.dummy_verify()
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except PasswordValueError:
        # bcrypt refuses NUL bytes; such a password can never match
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def generate_otp(length: int = OTP_LENGTH) -> str:
    """Zero-padded numeric code"""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def codes_match(supplied: str, expected: str) -> bool:
    return secrets.compare_digest(str(supplied).strip().encode("utf-8"), str(expected).encode("utf-8"))


def generate_reset_token() -> str:
    return secrets.token_hex(32)


def hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "iat": now})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def create_account_token(account: Account) -> str:
    """Token embedding the account claims"""
    return create_access_token(
        data={
            "sub": account.id,
            "email": account.email,
            "fullName": account.full_name,
            "role": account.role,
            "isAdmin": account.is_admin,
        }
    )


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


def get_current_account(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> Account:
    """
    Get current account from JWT token (required).
    Raises 401 if no token, invalid token, or the email is not verified.
    """
    if not credentials:
        raise UnauthorizedError("Access token required. Please provide a valid JWT token.", code="TOKEN_MISSING")

    payload = decode_token(credentials.credentials)
    if not payload:
        raise UnauthorizedError("Invalid or expired token", code="INVALID_TOKEN")

    account_id: str = payload.get("sub")
    if not account_id:
        raise UnauthorizedError("Invalid token", code="INVALID_TOKEN")

    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise UnauthorizedError("Token is valid but user no longer exists", code="USER_NOT_FOUND")

    if not account.is_email_verified:
        raise UnauthorizedError("Email not verified. Please verify your email first.", code="EMAIL_NOT_VERIFIED")

    return account


def get_admin_account(
    current_account: Account = Depends(get_current_account)
) -> Account:
    """Require admin role"""
    if not current_account.is_admin:
        raise ForbiddenError("Admin privileges required. Access denied.", code="ADMIN_ACCESS_DENIED")
    return current_account
