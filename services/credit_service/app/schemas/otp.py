from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field

from ..models import OtpPurpose


class OtpSendRequest(BaseModel):
    email: EmailStr
    type: OtpPurpose


class OtpSendResponse(BaseModel):
    message: str
    expires_at: datetime


class OtpVerifyRequest(BaseModel):
    email: EmailStr
    type: OtpPurpose
    otp: str = Field(..., min_length=4, max_length=12, pattern=r"^\d+$")


class OtpVerifyResponse(BaseModel):
    verified: bool
    email: str


class RegisterRequest(BaseModel):
    email: EmailStr
    name: str | None = Field(None, max_length=120)


class AccountResponse(BaseModel):
    user_id: int
    email: str
    funding_balance: int
    redeem_balance: int
    credit_limit: int | None
    next_redemption: datetime | None
