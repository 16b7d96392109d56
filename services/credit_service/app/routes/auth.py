from __future__ import annotations

from fastapi import APIRouter, Depends, status

from ..core.clock import ensure_utc
from ..dependencies import get_account_service, get_otp_gate
from ..schemas import (
    AccountResponse,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    RegisterRequest,
)
from ..services import AccountService, OtpGate

router = APIRouter()


@router.post("/otp/send", response_model=OtpSendResponse)
async def send_otp(payload: OtpSendRequest, otp: OtpGate = Depends(get_otp_gate)) -> OtpSendResponse:
    issued = await otp.issue(payload.email, payload.type)
    return OtpSendResponse(message="Verification code sent", expires_at=issued.expires_at)


@router.post("/otp/verify", response_model=OtpVerifyResponse)
async def verify_otp(payload: OtpVerifyRequest, otp: OtpGate = Depends(get_otp_gate)) -> OtpVerifyResponse:
    verified = await otp.verify(payload.email, payload.type, payload.otp)
    return OtpVerifyResponse(verified=True, email=verified.email)


@router.post("/register", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def register(
    payload: RegisterRequest,
    accounts: AccountService = Depends(get_account_service),
) -> AccountResponse:
    opened = await accounts.register(payload.email, payload.name)
    return AccountResponse(
        user_id=opened.account.id,
        email=opened.account.email,
        funding_balance=opened.funding_wallet.balance,
        redeem_balance=opened.redeem_wallet.balance,
        credit_limit=opened.redeem_wallet.credit_limit,
        next_redemption=ensure_utc(opened.redeem_wallet.next_redemption) if opened.redeem_wallet.next_redemption else None,
    )
