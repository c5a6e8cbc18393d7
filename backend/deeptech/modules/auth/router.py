"""
Auth router: DTUser registration, verification, password setup, login and recovery
"""
import logging

from fastapi import APIRouter, Depends, Query, status

from ...core.security import get_current_account
from ...models.account import Account
from .lifecycle import AccountLifecycle, get_lifecycle
from .schemas import (
    DTUserCreate, EmailRequest, OtpVerification, PasswordSetup, UserLogin,
    PasswordChange, PasswordResetWithToken, account_payload, token_envelope,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, we have sent a password reset link."


@router.post("/createDTuser", status_code=status.HTTP_201_CREATED)
async def create_dtuser(body: DTUserCreate, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    """Register a new DTUser and send the verification email"""
    result = await lifecycle.create_dtuser(
        full_name=body.full_name,
        email=body.email,
        phone=body.phone,
        domains=body.domains,
        consent=body.consent,
    )
    data = {"user": account_payload(result.account), "emailSent": result.email_sent}
    if not result.email_sent:
        data["warning"] = "Account created but the verification email could not be sent. Use resend verification."
    return {"success": True, "message": "User registered. Please check your email to verify your account.", "data": data}


@router.get("/verifyDTusermail/{user_id}")
async def verify_dtuser_email(
    user_id: str,
    email: str = Query(...),
    lifecycle: AccountLifecycle = Depends(get_lifecycle)
):
    """Email verification link target"""
    result = await lifecycle.verify_email(user_id, email)
    message = "Email already verified" if result.already_verified else "Email verified successfully"
    return {
        "success": True,
        "message": message,
        "alreadyVerified": result.already_verified,
        "data": {"user": account_payload(result.account)},
    }


@router.post("/verify-otp")
async def verify_dtuser_otp(body: OtpVerification, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    """Verify the email with the code from the verification email"""
    result = await lifecycle.verify_otp(body.email, body.code)
    message = "Email already verified" if result.already_verified else "Email verified successfully"
    return {
        "success": True,
        "message": message,
        "alreadyVerified": result.already_verified,
        "data": {"user": account_payload(result.account)},
    }


@router.post("/setupPassword")
async def setup_password(body: PasswordSetup, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    """One-time password setup after email verification"""
    account = await lifecycle.setup_password(body.user_id, body.email, body.password, body.confirm_password)
    return {
        "success": True,
        "message": "Password set successfully. You can now log in.",
        "data": {"user": account_payload(account)},
    }


@router.post("/dtUserLogin")
async def dtuser_login(body: UserLogin, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    result = await lifecycle.login(body.email, body.password)
    return token_envelope("Login successful", result.token, result.account)


@router.patch("/dtUserResetPassword")
async def change_password(
    body: PasswordChange,
    current_account: Account = Depends(get_current_account),
    lifecycle: AccountLifecycle = Depends(get_lifecycle)
):
    """Change password of the logged-in user"""
    email_sent = await lifecycle.reset_password(
        current_account, body.old_password, body.new_password, body.confirm_new_password
    )
    return {"success": True, "message": "Password updated successfully", "emailSent": email_sent}


@router.post("/resendVerificationEmail")
async def resend_verification_email(body: EmailRequest, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    result = await lifecycle.resend_verification(body.email)
    if result.already_verified:
        return {"success": True, "message": "Email is already verified", "alreadyVerified": True, "emailSent": False}
    return {
        "success": True,
        "message": "Verification email sent" if result.email_sent else "Verification code issued but the email could not be sent",
        "alreadyVerified": False,
        "emailSent": result.email_sent,
    }


@router.get("/me")
def get_me(current_account: Account = Depends(get_current_account)):
    """Profile of the logged-in user"""
    return {"success": True, "message": "OK", "data": {"user": account_payload(current_account)}}


@router.post("/forgotPassword")
async def forgot_password(body: EmailRequest, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    await lifecycle.forgot_password(body.email)
    return {"success": True, "message": FORGOT_PASSWORD_MESSAGE}


@router.get("/verifyResetToken/{token}")
def verify_reset_token(token: str, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    account = lifecycle.verify_reset_token(token)
    return {
        "success": True,
        "message": "Token is valid",
        "data": {"email": account.email, "expiresAt": account.password_reset_expires_at.isoformat()},
    }


@router.post("/resetPassword")
async def reset_password_with_token(body: PasswordResetWithToken, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    account = await lifecycle.reset_password_with_token(body.token, body.password, body.confirm_password)
    return {"success": True, "message": "Password has been reset. You can now log in.", "data": {"email": account.email}}
