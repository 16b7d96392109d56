from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from services.credit_service.app.db.base import Base


class TransactionType(str, Enum):
    credit = "CREDIT"
    debit = "DEBIT"
    top_up = "TOP_UP"
    purchase = "PURCHASE"
    bonus = "BONUS"
    refund = "REFUND"
    redemption = "REDEMPTION"

    @property
    def sign(self) -> int:
        return -1 if self in DEBIT_TYPES else 1


DEBIT_TYPES = frozenset({TransactionType.debit, TransactionType.purchase})


class CreditTransaction(Base):
    """Append-only ledger row; `amount` is always positive, the type carries the sign."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    wallet_id: Mapped[int] = mapped_column(ForeignKey("wallets.id", ondelete="CASCADE"), index=True, nullable=False)
    wallet_type: Mapped[str] = mapped_column(String(10), nullable=False)
    type: Mapped[str] = mapped_column(String(12), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reference_type: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def signed_amount(self) -> int:
        return TransactionType(self.type).sign * self.amount
