"""
Admin router: admin account creation, OTP verification, login and DTUser review
"""
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, status

from ...core.config import OTP_TTL_MINUTES
from ...core.security import get_admin_account
from ...models.account import Account, STATUS_APPROVED, STATUS_REJECTED
from ..auth.lifecycle import AccountLifecycle, get_lifecycle
from ..auth.schemas import EmailRequest, OtpVerification, UserLogin, account_payload, token_envelope
from .schemas import AdminCreate, StatusDecision

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_admin(body: AdminCreate, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    """Create an admin account and email the OTP that activates it"""
    result = await lifecycle.create_admin(
        full_name=body.full_name,
        email=body.email,
        phone=body.phone,
        password=body.password,
        confirm_password=body.confirm_password,
        admin_key=body.admin_key,
    )
    data = {
        "userId": result.account.id,
        "email": result.account.email,
        "expiresIn": f"{OTP_TTL_MINUTES} minutes",
        "emailSent": result.email_sent,
    }
    if not result.email_sent:
        data["warning"] = "Admin created but the OTP email could not be sent. Use resend OTP."
    return {"success": True, "message": "Admin account created. Verify the OTP sent to your email.", "data": data}


@router.post("/verify-otp")
async def verify_admin_otp(body: OtpVerification, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    result = await lifecycle.verify_otp(body.email, body.code)
    if result.already_verified:
        return {
            "success": True,
            "message": "Email already verified. Please log in.",
            "alreadyVerified": True,
            "admin": account_payload(result.account),
        }
    response = token_envelope("OTP verified successfully", result.token, result.account, key="admin")
    response["alreadyVerified"] = False
    return response


@router.post("/resend-otp")
async def resend_admin_otp(body: EmailRequest, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    result = await lifecycle.resend_verification(body.email)
    if result.already_verified:
        return {"success": True, "message": "Email is already verified", "alreadyVerified": True, "emailSent": False}
    return {
        "success": True,
        "message": "OTP sent" if result.email_sent else "OTP issued but the email could not be sent",
        "alreadyVerified": False,
        "emailSent": result.email_sent,
        "expiresIn": f"{OTP_TTL_MINUTES} minutes",
    }


@router.post("/login")
async def admin_login(body: UserLogin, lifecycle: AccountLifecycle = Depends(get_lifecycle)):
    result = await lifecycle.login(body.email, body.password, admin=True)
    return token_envelope("Admin login successful", result.token, result.account, key="admin")


@router.get("/me")
def get_admin_me(admin: Account = Depends(get_admin_account)):
    return {"success": True, "message": "OK", "admin": account_payload(admin)}


async def _decide(user_id: str, decision: str, body: Optional[StatusDecision], admin: Account, lifecycle: AccountLifecycle):
    track = body.track if body else "annotator"
    account, email_sent = await lifecycle.set_workflow_status(user_id, track, decision)
    logger.info(f"Admin {admin.email} set {track} status of {account.email} to {decision}")
    return {
        "success": True,
        "message": f"{track} {decision}",
        "data": {"user": account_payload(account), "emailNotificationSent": email_sent},
    }


@router.patch("/dtusers/{user_id}/approve")
async def approve_dtuser(
    user_id: str,
    body: Optional[StatusDecision] = Body(default=None),
    admin: Account = Depends(get_admin_account),
    lifecycle: AccountLifecycle = Depends(get_lifecycle)
):
    return await _decide(user_id, STATUS_APPROVED, body, admin, lifecycle)


@router.patch("/dtusers/{user_id}/reject")
async def reject_dtuser(
    user_id: str,
    body: Optional[StatusDecision] = Body(default=None),
    admin: Account = Depends(get_admin_account),
    lifecycle: AccountLifecycle = Depends(get_lifecycle)
):
    return await _decide(user_id, STATUS_REJECTED, body, admin, lifecycle)
