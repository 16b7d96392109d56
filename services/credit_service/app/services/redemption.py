from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from math import ceil

from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock, ensure_utc, utcnow
from ..core.policy import LedgerPolicy
from ..db.unit import atomic
from ..errors import NotFound, RedemptionNotYetAvailable
from ..metrics import redemption_total
from ..models import TransactionType, Wallet, WalletType
from .ledger import LedgerEngine, MutationResult, observe_mutation


@dataclass(frozen=True)
class RedemptionResult:
    user_id: int
    credited: int
    new_balance: int
    next_redemption: datetime
    transaction_id: int | None


@dataclass(frozen=True)
class RedemptionStatus:
    eligible: bool
    available_at: datetime | None
    retry_after_seconds: int


def clip_redemption(balance: int, limit: int | None, amount: int) -> int:
    """Credits a redemption may add without pushing the balance past ``limit``."""
    if limit is None:
        return amount
    return max(0, min(amount, limit - balance))


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(0, ceil((moment - now).total_seconds()))


class RedemptionController:
    """Periodic free-credit allowance layered on top of the ledger engine.

    Claiming the window and depositing the credits happen in one unit. The
    claim is a conditional update on ``next_redemption <= now``, so two
    concurrent redeems for the same wallet cannot both succeed. When the
    wallet is already at its limit the window is still consumed and zero
    credits are added.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerEngine,
        policy: LedgerPolicy,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._policy = policy
        self._clock = clock

    async def status(self, user_id: int) -> RedemptionStatus:
        now = self._clock()
        async with atomic(self._session_factory, "redemption_status") as session:
            next_redemption = await self._next_redemption(session, user_id)
        if next_redemption is None or next_redemption <= now:
            return RedemptionStatus(eligible=True, available_at=next_redemption, retry_after_seconds=0)
        return RedemptionStatus(
            eligible=False,
            available_at=next_redemption,
            retry_after_seconds=_seconds_until(next_redemption, now),
        )

    async def redeem(self, user_id: int) -> RedemptionResult:
        now = self._clock()
        next_at = now + self._policy.redemption_window
        mutation: MutationResult | None = None

        async with atomic(self._session_factory, "redeem") as session:
            claim = await session.execute(
                update(Wallet)
                .where(
                    Wallet.user_id == user_id,
                    Wallet.wallet_type == WalletType.redeem.value,
                    or_(Wallet.next_redemption.is_(None), Wallet.next_redemption <= now),
                )
                .values(next_redemption=next_at, last_redeemed_at=now)
                .execution_options(synchronize_session=False)
            )
            row = (
                await session.execute(
                    select(Wallet.balance, Wallet.credit_limit, Wallet.next_redemption).where(
                        Wallet.user_id == user_id,
                        Wallet.wallet_type == WalletType.redeem.value,
                    )
                )
            ).first()
            if row is None:
                raise NotFound("Wallet", user_id=user_id, wallet_type=WalletType.redeem.value)
            if claim.rowcount == 0:
                available_at = ensure_utc(row.next_redemption)
                wait = _seconds_until(available_at, now)
                redemption_total.labels(outcome="cooling_down").inc()
                logger.info(f"redemption.cooling_down user={user_id} retry_after={wait}s")
                raise RedemptionNotYetAvailable(available_at, wait)

            amount = clip_redemption(row.balance, row.credit_limit, self._policy.redemption_amount)
            balance = row.balance
            if amount > 0:
                mutation = await self._ledger.apply(
                    session,
                    user_id=user_id,
                    wallet_type=WalletType.redeem,
                    delta=amount,
                    transaction_type=TransactionType.redemption,
                    description=f"Free credit redemption ({amount} credits)",
                )
                balance = mutation.new_balance

        if mutation is not None:
            observe_mutation(mutation)
            redemption_total.labels(outcome="credited").inc()
        else:
            redemption_total.labels(outcome="capped").inc()
            logger.info(f"redemption.capped user={user_id} balance={balance} limit={row.credit_limit}")
        return RedemptionResult(
            user_id=user_id,
            credited=amount,
            new_balance=balance,
            next_redemption=next_at,
            transaction_id=mutation.transaction_id if mutation else None,
        )

    @staticmethod
    async def _next_redemption(session: AsyncSession, user_id: int) -> datetime | None:
        row = (
            await session.execute(
                select(Wallet.id, Wallet.next_redemption).where(
                    Wallet.user_id == user_id,
                    Wallet.wallet_type == WalletType.redeem.value,
                )
            )
        ).first()
        if row is None:
            raise NotFound("Wallet", user_id=user_id, wallet_type=WalletType.redeem.value)
        return ensure_utc(row.next_redemption) if row.next_redemption else None
