from __future__ import annotations

from pydantic import BaseModel, Field

from ..models import WalletType


class GrantRequest(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0)
    reason: str | None = Field(None, max_length=200)


class AdjustRequest(BaseModel):
    user_id: int
    wallet_type: WalletType
    balance: int | None = Field(None, ge=0)
    limit: int | None = Field(None, ge=0)
    reason: str | None = Field(None, max_length=200)


class OverviewResponse(BaseModel):
    wallet_count: int
    funding_total: int
    redeem_total: int
    total_purchased: int
    total_spent: int
