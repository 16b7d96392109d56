from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from ..settings import CreditSettings


@dataclass(frozen=True)
class LedgerPolicy:
    """Tunable credit rules handed to the ledger, redemption and account services."""

    initial_credits: int = 3
    credit_limit: int = 5
    redemption_amount: int = 1
    redemption_window: timedelta = timedelta(days=15)
    max_grant_amount: int = 10000
    default_page_size: int = 20
    max_page_size: int = 100

    @classmethod
    def from_settings(cls, settings: CreditSettings) -> "LedgerPolicy":
        return cls(
            initial_credits=settings.initial_credits,
            credit_limit=settings.credit_limit,
            redemption_amount=settings.redemption_amount,
            redemption_window=timedelta(days=settings.redemption_window_days),
            max_grant_amount=settings.max_grant_amount,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )


@dataclass(frozen=True)
class OtpPolicy:
    length: int = 6
    expiry: timedelta = timedelta(minutes=10)
    max_attempts: int = 3
    cooldown: timedelta = timedelta(seconds=60)
    verified_freshness: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, settings: CreditSettings) -> "OtpPolicy":
        return cls(
            length=settings.otp_length,
            expiry=timedelta(minutes=settings.otp_expiry_minutes),
            max_attempts=settings.otp_max_attempts,
            cooldown=timedelta(seconds=settings.otp_cooldown_seconds),
            verified_freshness=timedelta(minutes=settings.otp_verified_freshness_minutes),
        )
