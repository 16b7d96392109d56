from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from services.credit_service.app.db.base import TimestampedModel


class WalletType(str, Enum):
    funding = "FUNDING"
    redeem = "REDEEM"


class Wallet(TimestampedModel):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "wallet_type", name="uq_wallet_user_type"),
        CheckConstraint("balance >= 0", name="ck_wallet_balance_non_negative"),
    )

    user_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False)
    wallet_type: Mapped[str] = mapped_column(String(10), nullable=False)
    balance: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    # Funding wallet counters
    total_purchased: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)

    # Redeem wallet allowance
    credit_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_redemption: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_redeemed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
