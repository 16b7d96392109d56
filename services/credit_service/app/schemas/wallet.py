from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from ..models import TransactionType, WalletType


class FundingWalletDetails(BaseModel):
    balance: int
    total_purchased: int
    total_spent: int


class RedeemWalletDetails(BaseModel):
    balance: int
    limit: int | None
    next_redemption: datetime | None


class BalanceResponse(BaseModel):
    funding_balance: int
    redeem_balance: int
    total_credits: int
    funding: FundingWalletDetails
    redeem: RedeemWalletDetails


class SpendRequest(BaseModel):
    wallet_type: WalletType = WalletType.funding
    amount: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)


class MutationResponse(BaseModel):
    wallet_type: WalletType
    transaction_type: TransactionType
    delta: int
    new_balance: int
    transaction_id: int


class RedemptionResponse(BaseModel):
    credited: int
    new_balance: int
    next_redemption: datetime
    transaction_id: int | None = None


class RedemptionStatusResponse(BaseModel):
    eligible: bool
    available_at: datetime | None
    retry_after_seconds: int
