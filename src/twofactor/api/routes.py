"""2FA endpoints for the current user.

Authentication is handled upstream; the gateway forwards the user's id and
email in the X-User-Id / X-User-Email headers.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel

from twofactor.engine import TwoFactorEngine

router = APIRouter(prefix="/auth/2fa", tags=["auth"])


class VerifyCode(BaseModel):
    code: str


def get_engine(request: Request) -> TwoFactorEngine:
    return request.app.state.engine


Engine = Annotated[TwoFactorEngine, Depends(get_engine)]
UserId = Annotated[str, Header(alias="X-User-Id")]
UserEmail = Annotated[str, Header(alias="X-User-Email")]


@router.get("/status")
async def get_status(engine: Engine, user_id: UserId):
    status = await engine.status(user_id)
    return {"enabled": status.enabled, "backupCodesRemaining": status.backup_codes_remaining}


@router.post("/setup")
async def setup(engine: Engine, user_id: UserId, email: UserEmail):
    if await engine.is_enabled(user_id):
        return {"error": "2FA is already enabled", "enabled": True}

    result = await engine.begin_setup(user_id, email)
    return {
        "message": "Scan the QR code with your authenticator app",
        "qrCodeUrl": result.qr_payload,
        "otpauthUrl": result.provisioning_uri,
        "secret": result.secret,
        "manualEntryKey": result.secret,
        "instructions": [
            "1. Install Google Authenticator or Authy on your phone",
            "2. Scan the QR code or enter the key manually",
            "3. Enter the 6-digit code to verify",
        ],
    }


@router.post("/enable")
async def enable(body: VerifyCode, engine: Engine, user_id: UserId):
    result = await engine.confirm_enable(user_id, body.code)
    return {
        "success": result.success,
        "message": "2FA enabled",
        "backupCodes": result.backup_codes,
        "warning": "Store these backup codes somewhere safe. You will need them if you lose your authenticator.",
    }


@router.delete("/disable")
async def disable(body: VerifyCode, engine: Engine, user_id: UserId):
    await engine.disable(user_id, body.code)
    return {"success": True, "message": "2FA disabled"}


@router.post("/verify")
async def verify(body: VerifyCode, engine: Engine, user_id: UserId):
    result = await engine.verify(user_id, body.code)
    if not result.valid:
        return {"valid": False, "message": "Invalid code"}
    return {
        "valid": True,
        "usedBackupCode": result.used_backup_code,
        "message": "Verified with a backup code" if result.used_backup_code else "Code verified",
    }


@router.post("/backup-codes/regenerate")
async def regenerate_backup_codes(body: VerifyCode, engine: Engine, user_id: UserId):
    codes = await engine.regenerate_backup_codes(user_id, body.code)
    return {
        "success": True,
        "backupCodes": codes,
        "message": "New backup codes generated",
        "warning": "Your previous backup codes no longer work. Store these new codes somewhere safe.",
    }


@router.get("/backup-codes/count")
async def backup_codes_count(engine: Engine, user_id: UserId):
    count = await engine.backup_code_count(user_id)
    return count.model_dump()
