from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..models import PaymentMethod
from .common import Pagination


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    credits: int
    bonus_credits: int
    price: Decimal
    savings_percent: int | None = None
    is_popular: bool


class PaymentSettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    method: str
    label: str
    instructions: str
    bank_name: str | None = None
    account_title: str | None = None
    account_number: str | None = None
    iban: str | None = None
    mobile_number: str | None = None


class TopUpOptionsResponse(BaseModel):
    packages: list[PackageResponse]
    payment_methods: list[PaymentSettingResponse]


class TopUpCreate(BaseModel):
    package_id: int
    payment_method: PaymentMethod


class TopUpResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    request_number: str
    user_id: int
    package_id: int
    status: str
    credits: int
    bonus_credits: int
    amount: Decimal
    payment_method: str
    processor_id: int | None = None
    admin_notes: str | None = None
    rejection_reason: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None


class TopUpCreatedResponse(BaseModel):
    request: TopUpResponse
    package: PackageResponse
    payment_instructions: PaymentSettingResponse


class TopUpApproveRequest(BaseModel):
    admin_notes: str | None = Field(None, max_length=2000)


class TopUpRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    admin_notes: str | None = Field(None, max_length=2000)


class TopUpApprovalResponse(BaseModel):
    request: TopUpResponse
    transaction_id: int
    new_balance: int


class TopUpStats(BaseModel):
    pending: int = 0
    completed: int = 0
    rejected: int = 0
    cancelled: int = 0
    total: int = 0


class TopUpListResponse(BaseModel):
    items: list[TopUpResponse]
    pagination: Pagination
    stats: TopUpStats


class PendingCountResponse(BaseModel):
    pending: int
