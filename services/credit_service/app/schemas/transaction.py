from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .common import Pagination


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    wallet_type: str
    amount: int
    description: str
    reference_type: str | None = None
    reference_id: str | None = None
    payment_method: str | None = None
    created_at: datetime


class TypeTotalsResponse(BaseModel):
    amount: int
    count: int


class TransactionSummary(BaseModel):
    total_credits: int
    total_debits: int
    total_top_ups: int
    total_purchases: int
    total_redemptions: int


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    pagination: Pagination
    summary: TransactionSummary
    by_type: dict[str, TypeTotalsResponse]
    by_wallet_type: dict[str, TypeTotalsResponse]
