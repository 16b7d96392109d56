from __future__ import annotations

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from services.credit_service.app.db.base import TimestampedModel


class PaymentMethod(str, Enum):
    bank_transfer = "BANK_TRANSFER"
    jazzcash = "JAZZCASH"
    easypaisa = "EASYPAISA"


class CreditPackage(TimestampedModel):
    __tablename__ = "credit_packages"

    slug: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    savings_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class PaymentSetting(TimestampedModel):
    """How a member pays out of band for a top-up; shown alongside the request number."""

    __tablename__ = "payment_settings"

    method: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    label: Mapped[str] = mapped_column(String(60), nullable=False)
    instructions: Mapped[str] = mapped_column(Text, nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    account_title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(40), nullable=True)
    iban: Mapped[str | None] = mapped_column(String(40), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
