from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from math import ceil
from typing import Any

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock, ensure_utc, utcnow
from ..core.policy import LedgerPolicy
from ..db.unit import atomic
from ..errors import InsufficientBalance, InvalidAmount, NotFound
from ..metrics import ledger_insufficient_balance_total, ledger_mutation_total
from ..models import (
    DEBIT_TYPES,
    Account,
    CreditTransaction,
    TransactionType,
    Wallet,
    WalletType,
)
from .access import ADJUST_CREDITS, GRANT_CREDITS, VIEW_WALLET_DETAILS, AccessGate, Actor, require_capability

CREDIT_TYPES = tuple(t for t in TransactionType if t not in DEBIT_TYPES)


@dataclass(frozen=True)
class MutationResult:
    user_id: int
    wallet_id: int
    wallet_type: WalletType
    transaction_type: TransactionType
    delta: int
    new_balance: int
    transaction_id: int


@dataclass
class BalanceSnapshot:
    user_id: int
    funding_balance: int = 0
    redeem_balance: int = 0
    total_purchased: int = 0
    total_spent: int = 0
    credit_limit: int | None = None
    next_redemption: datetime | None = None

    @property
    def total_credits(self) -> int:
        return self.funding_balance + self.redeem_balance


@dataclass
class TransactionFilters:
    user_id: int | None = None
    type: TransactionType | None = None
    wallet_type: WalletType | None = None
    start: datetime | None = None
    end: datetime | None = None
    search: str | None = None


@dataclass
class TypeTotals:
    amount: int = 0
    count: int = 0


@dataclass
class TransactionPage:
    items: list[CreditTransaction]
    page: int
    limit: int
    total: int
    by_type: dict[str, TypeTotals] = field(default_factory=dict)
    by_wallet_type: dict[str, TypeTotals] = field(default_factory=dict)

    @property
    def pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0

    @property
    def total_credits(self) -> int:
        return sum(self.by_type[t.value].amount for t in CREDIT_TYPES if t.value in self.by_type)

    @property
    def total_debits(self) -> int:
        return sum(self.by_type[t.value].amount for t in DEBIT_TYPES if t.value in self.by_type)


@dataclass(frozen=True)
class LedgerOverview:
    wallet_count: int
    funding_total: int
    redeem_total: int
    total_purchased: int
    total_spent: int


def observe_mutation(result: MutationResult) -> None:
    """Record a mutation once its unit has committed."""
    ledger_mutation_total.labels(
        wallet_type=result.wallet_type.value,
        transaction_type=result.transaction_type.value,
    ).inc()
    logger.info(
        f"ledger.mutation.applied user={result.user_id} wallet={result.wallet_type.value} "
        f"type={result.transaction_type.value} delta={result.delta} balance={result.new_balance} "
        f"transaction={result.transaction_id}"
    )


class LedgerEngine:
    """Owns wallet balances and the transaction log that justifies them.

    Every balance change goes through :meth:`apply`, which performs a
    conditional in-database increment (``balance + delta >= 0``) and writes
    the matching transaction row in the caller's unit. The conditional
    update is what serializes concurrent mutations of one wallet: the
    store never sees a read-modify-write from Python.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: LedgerPolicy,
        gate: AccessGate,
        clock: Clock = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._policy = policy
        self._gate = gate
        self._clock = clock

    # -- mutation primitive -------------------------------------------------

    async def mutate(
        self,
        user_id: int,
        wallet_type: WalletType,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        **reference: Any,
    ) -> MutationResult:
        async with atomic(self._session_factory, "mutate") as session:
            result = await self.apply(
                session,
                user_id=user_id,
                wallet_type=wallet_type,
                delta=delta,
                transaction_type=transaction_type,
                description=description,
                **reference,
            )
        observe_mutation(result)
        return result

    async def apply(
        self,
        session: AsyncSession,
        *,
        user_id: int,
        wallet_type: WalletType,
        delta: int,
        transaction_type: TransactionType,
        description: str,
        reference_type: str | None = None,
        reference_id: str | None = None,
        payment_method: str | None = None,
    ) -> MutationResult:
        """Apply ``delta`` and append its transaction inside an already open unit."""
        _validate_delta(delta, transaction_type)

        wallet_id = await self._increment(session, user_id, wallet_type, delta)
        if wallet_id is None:
            current = await self._wallet_balance(session, user_id, wallet_type)
            if current is not None or delta < 0:
                balance = current[1] if current is not None else 0
                ledger_insufficient_balance_total.labels(wallet_type=wallet_type.value).inc()
                logger.info(
                    f"ledger.mutation.insufficient user={user_id} wallet={wallet_type.value} "
                    f"balance={balance} requested={-delta}"
                )
                raise InsufficientBalance(wallet_type.value, balance, -delta)
            await self.open_wallet(session, user_id, wallet_type)
            wallet_id = await self._increment(session, user_id, wallet_type, delta)

        transaction = await self._record_transaction(
            session,
            CreditTransaction(
                user_id=user_id,
                wallet_id=wallet_id,
                wallet_type=wallet_type.value,
                type=transaction_type.value,
                amount=abs(delta),
                description=description[:255],
                reference_type=reference_type,
                reference_id=reference_id,
                payment_method=payment_method,
                created_at=self._clock(),
            ),
        )
        _, balance = await self._wallet_balance(session, user_id, wallet_type)
        return MutationResult(
            user_id=user_id,
            wallet_id=wallet_id,
            wallet_type=wallet_type,
            transaction_type=transaction_type,
            delta=delta,
            new_balance=balance,
            transaction_id=transaction.id,
        )

    async def open_wallet(self, session: AsyncSession, user_id: int, wallet_type: WalletType) -> Wallet:
        if await session.get(Account, user_id) is None:
            raise NotFound("Account", user_id=user_id)
        wallet = Wallet(user_id=user_id, wallet_type=wallet_type.value, balance=0, total_purchased=0, total_spent=0)
        if wallet_type == WalletType.redeem:
            wallet.credit_limit = self._policy.credit_limit
            wallet.next_redemption = self._clock() + self._policy.redemption_window
        session.add(wallet)
        await session.flush()
        logger.info(f"ledger.wallet.opened user={user_id} wallet={wallet_type.value}")
        return wallet

    async def _increment(self, session: AsyncSession, user_id: int, wallet_type: WalletType, delta: int) -> int | None:
        values: dict[str, Any] = {"balance": Wallet.balance + delta}
        if wallet_type == WalletType.funding:
            if delta > 0:
                values["total_purchased"] = Wallet.total_purchased + delta
            else:
                values["total_spent"] = Wallet.total_spent - delta
        stmt = (
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.wallet_type == wallet_type.value,
                Wallet.balance + delta >= 0,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        wallet_id, _ = await self._wallet_balance(session, user_id, wallet_type)
        return wallet_id

    async def _wallet_balance(self, session: AsyncSession, user_id: int, wallet_type: WalletType) -> tuple[int, int] | None:
        row = (
            await session.execute(
                select(Wallet.id, Wallet.balance).where(
                    Wallet.user_id == user_id,
                    Wallet.wallet_type == wallet_type.value,
                )
            )
        ).first()
        return (row.id, row.balance) if row is not None else None

    async def _record_transaction(self, session: AsyncSession, transaction: CreditTransaction) -> CreditTransaction:
        session.add(transaction)
        await session.flush()
        return transaction

    # -- operations ---------------------------------------------------------

    async def spend(self, user_id: int, wallet_type: WalletType, amount: int, description: str) -> MutationResult:
        if amount <= 0:
            raise InvalidAmount("Amount must be positive", amount=amount)
        return await self.mutate(user_id, wallet_type, -amount, TransactionType.purchase, description)

    async def grant(self, actor: Actor, user_id: int, amount: int, reason: str | None = None) -> MutationResult:
        """Administrative credit into the funding wallet; ignores the redeem cap."""
        require_capability(self._gate, actor, GRANT_CREDITS)
        if amount <= 0 or amount > self._policy.max_grant_amount:
            raise InvalidAmount(
                f"Amount must be between 1 and {self._policy.max_grant_amount}",
                amount=amount,
                max_amount=self._policy.max_grant_amount,
            )
        if reason and reason.strip():
            description = f"Admin credit: {reason.strip()} (by {actor.user_id})"
        else:
            description = f"Admin credit addition (by {actor.user_id})"
        result = await self.mutate(
            user_id,
            WalletType.funding,
            amount,
            TransactionType.credit,
            description,
            reference_type="ADMIN_GRANT",
            reference_id=str(actor.user_id),
        )
        logger.info(f"ledger.grant user={user_id} amount={amount} by={actor.user_id}")
        return result

    async def adjust(
        self,
        actor: Actor,
        user_id: int,
        wallet_type: WalletType,
        *,
        balance: int | None = None,
        limit: int | None = None,
        reason: str | None = None,
    ) -> BalanceSnapshot:
        """Set an absolute balance and/or redeem limit; balance moves are logged as CREDIT/DEBIT."""
        require_capability(self._gate, actor, ADJUST_CREDITS)
        if balance is None and limit is None:
            raise InvalidAmount("Nothing to adjust")
        if balance is not None and balance < 0:
            raise InvalidAmount("Balance cannot be negative", balance=balance)
        if limit is not None and (limit < 0 or wallet_type != WalletType.redeem):
            raise InvalidAmount("Only redeem wallets carry a non-negative limit", limit=limit)

        result: MutationResult | None = None
        async with atomic(self._session_factory, "adjust") as session:
            wallet = (
                await session.execute(
                    select(Wallet)
                    .where(Wallet.user_id == user_id, Wallet.wallet_type == wallet_type.value)
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if wallet is None:
                raise NotFound("Wallet", user_id=user_id, wallet_type=wallet_type.value)
            if balance is not None and balance != wallet.balance:
                delta = balance - wallet.balance
                note = f"Admin adjustment: {reason.strip()}" if reason and reason.strip() else "Admin adjustment"
                result = await self.apply(
                    session,
                    user_id=user_id,
                    wallet_type=wallet_type,
                    delta=delta,
                    transaction_type=TransactionType.credit if delta > 0 else TransactionType.debit,
                    description=f"{note} (by {actor.user_id})",
                    reference_type="ADMIN_ADJUSTMENT",
                    reference_id=str(actor.user_id),
                )
            if limit is not None:
                await session.execute(
                    update(Wallet)
                    .where(Wallet.id == wallet.id)
                    .values(credit_limit=limit)
                    .execution_options(synchronize_session=False)
                )
                logger.info(f"ledger.limit.adjusted user={user_id} limit={limit} by={actor.user_id}")
        if result is not None:
            observe_mutation(result)
        return await self.get_balances(user_id)

    # -- queries ------------------------------------------------------------

    async def get_balances(self, user_id: int) -> BalanceSnapshot:
        async with atomic(self._session_factory, "get_balances") as session:
            wallets = (await session.execute(select(Wallet).where(Wallet.user_id == user_id))).scalars().all()
            if not wallets and await session.get(Account, user_id) is None:
                raise NotFound("Account", user_id=user_id)
        snapshot = BalanceSnapshot(user_id=user_id)
        for wallet in wallets:
            if wallet.wallet_type == WalletType.funding.value:
                snapshot.funding_balance = wallet.balance
                snapshot.total_purchased = wallet.total_purchased
                snapshot.total_spent = wallet.total_spent
            else:
                snapshot.redeem_balance = wallet.balance
                snapshot.credit_limit = wallet.credit_limit
                snapshot.next_redemption = ensure_utc(wallet.next_redemption) if wallet.next_redemption else None
        return snapshot

    async def list_transactions(
        self,
        user_id: int,
        filters: TransactionFilters | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> TransactionPage:
        filters = replace(filters or TransactionFilters(), user_id=user_id)
        return await self._page(filters, page, limit)

    async def list_all_transactions(
        self,
        actor: Actor,
        filters: TransactionFilters | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> TransactionPage:
        require_capability(self._gate, actor, VIEW_WALLET_DETAILS)
        return await self._page(filters or TransactionFilters(), page, limit)

    async def overview(self, actor: Actor) -> LedgerOverview:
        require_capability(self._gate, actor, VIEW_WALLET_DETAILS)
        async with atomic(self._session_factory, "overview") as session:
            rows = (
                await session.execute(
                    select(
                        Wallet.wallet_type,
                        func.count(Wallet.id),
                        func.coalesce(func.sum(Wallet.balance), 0),
                        func.coalesce(func.sum(Wallet.total_purchased), 0),
                        func.coalesce(func.sum(Wallet.total_spent), 0),
                    ).group_by(Wallet.wallet_type)
                )
            ).all()
        totals = {row[0]: row for row in rows}
        funding = totals.get(WalletType.funding.value)
        redeem = totals.get(WalletType.redeem.value)
        return LedgerOverview(
            wallet_count=sum(row[1] for row in rows),
            funding_total=int(funding[2]) if funding else 0,
            redeem_total=int(redeem[2]) if redeem else 0,
            total_purchased=int(funding[3]) if funding else 0,
            total_spent=int(funding[4]) if funding else 0,
        )

    async def _page(self, filters: TransactionFilters, page: int, limit: int | None) -> TransactionPage:
        page, limit = self.page_bounds(page, limit)
        conditions = _filter_conditions(filters)
        async with atomic(self._session_factory, "list_transactions") as session:
            total = await session.scalar(select(func.count(CreditTransaction.id)).where(*conditions))
            items = (
                await session.execute(
                    select(CreditTransaction)
                    .where(*conditions)
                    .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars().all()
            by_type = await self._totals(session, CreditTransaction.type, conditions)
            by_wallet_type = await self._totals(session, CreditTransaction.wallet_type, conditions)
        return TransactionPage(
            items=list(items),
            page=page,
            limit=limit,
            total=total or 0,
            by_type=by_type,
            by_wallet_type=by_wallet_type,
        )

    @staticmethod
    async def _totals(session: AsyncSession, column, conditions: list) -> dict[str, TypeTotals]:
        rows = (
            await session.execute(
                select(column, func.coalesce(func.sum(CreditTransaction.amount), 0), func.count(CreditTransaction.id))
                .where(*conditions)
                .group_by(column)
            )
        ).all()
        return {key: TypeTotals(amount=int(amount), count=int(count)) for key, amount, count in rows}

    def page_bounds(self, page: int, limit: int | None) -> tuple[int, int]:
        limit = limit or self._policy.default_page_size
        return max(page, 1), max(1, min(limit, self._policy.max_page_size))


def _validate_delta(delta: int, transaction_type: TransactionType) -> None:
    if delta == 0:
        raise InvalidAmount("Amount must be non-zero", amount=delta)
    if (delta < 0) != (transaction_type in DEBIT_TYPES):
        raise InvalidAmount(
            f"{transaction_type.value} transactions cannot move the balance by {delta}",
            amount=delta,
            transaction_type=transaction_type.value,
        )


def _filter_conditions(filters: TransactionFilters) -> list:
    conditions = []
    if filters.user_id is not None:
        conditions.append(CreditTransaction.user_id == filters.user_id)
    if filters.type is not None:
        conditions.append(CreditTransaction.type == filters.type.value)
    if filters.wallet_type is not None:
        conditions.append(CreditTransaction.wallet_type == filters.wallet_type.value)
    if filters.start is not None:
        conditions.append(CreditTransaction.created_at >= filters.start)
    if filters.end is not None:
        conditions.append(CreditTransaction.created_at <= filters.end)
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        conditions.append(or_(CreditTransaction.description.ilike(pattern), CreditTransaction.reference_id == filters.search.strip()))
    return conditions
