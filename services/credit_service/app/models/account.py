from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from services.credit_service.app.db.base import TimestampedModel


class Account(TimestampedModel):
    """Local owner record for a member's wallets, keyed by the identity user id."""

    __tablename__ = "accounts"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
