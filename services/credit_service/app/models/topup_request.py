from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from services.credit_service.app.db.base import TimestampedModel


class TopUpStatus(str, Enum):
    pending = "PENDING"
    completed = "COMPLETED"
    rejected = "REJECTED"
    cancelled = "CANCELLED"


class TopUpRequest(TimestampedModel):
    __tablename__ = "topup_requests"
    __table_args__ = (
        # At most one open request per member.
        Index(
            "uq_topup_requests_one_pending",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    # Assigned from the row id once the insert is flushed.
    request_number: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("accounts.id", ondelete="CASCADE"), index=True, nullable=False)
    package_id: Mapped[int] = mapped_column(ForeignKey("credit_packages.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(12), index=True, default=TopUpStatus.pending.value, nullable=False)

    # Snapshot of the package at request time
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    bonus_credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)

    processor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def total_credits(self) -> int:
        return self.credits + self.bonus_credits
