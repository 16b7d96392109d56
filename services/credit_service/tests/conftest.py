from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.credit_service.app.core.policy import LedgerPolicy, OtpPolicy
from services.credit_service.app.db.base import Base
from services.credit_service.app.db.seed_catalog import seed_default_catalog
from services.credit_service.app.models import (
    Account,
    CreditPackage,
    CreditTransaction,
    Wallet,
    WalletType,
)
from services.credit_service.app.services import (
    AccountService,
    LedgerEngine,
    OtpGate,
    PackageCatalog,
    RedemptionController,
    RoleCapabilityGate,
    TopUpWorkflow,
)
from services.credit_service.app.services.otp import IssuedOtp
from services.credit_service.app import settings as credit_settings_module

START = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

CAPABILITY_ROLES = {
    "grant_credits": ["SUPER_ADMIN", "SUPERVISOR"],
    "adjust_credits": ["SUPER_ADMIN", "SUPERVISOR"],
    "approve_topup": ["SUPER_ADMIN", "SUPERVISOR"],
    "view_wallet_details": ["SUPER_ADMIN", "SUPERVISOR"],
    "delete_users": ["SUPER_ADMIN"],
}


class FrozenClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass
class RecordingNotifier:
    sent: list[IssuedOtp] = field(default_factory=list)

    async def deliver(self, otp: IssuedOtp) -> None:
        self.sent.append(otp)

    def last_code(self) -> str:
        return self.sent[-1].code


@dataclass
class Ledger:
    """Every credit service wired to one database and one clock."""

    session_factory: async_sessionmaker[AsyncSession]
    clock: FrozenClock
    policy: LedgerPolicy
    engine: LedgerEngine
    redemption: RedemptionController
    catalog: PackageCatalog
    topups: TopUpWorkflow
    otp: OtpGate
    accounts: AccountService
    notifier: RecordingNotifier


@pytest.fixture(autouse=True)
def _fresh_settings():
    credit_settings_module.credit_settings.cache_clear()
    yield
    credit_settings_module.credit_settings.cache_clear()


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    # A file database gives every session its own connection, so concurrent units really contend.
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'credit.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with factory() as session, session.begin():
        await seed_default_catalog(session)
    yield factory
    await engine.dispose()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def policy() -> LedgerPolicy:
    return LedgerPolicy(initial_credits=3, credit_limit=5, redemption_amount=1, redemption_window=timedelta(days=15))


@pytest.fixture()
def ledger(session_factory, clock, policy) -> Ledger:
    gate = RoleCapabilityGate(CAPABILITY_ROLES)
    notifier = RecordingNotifier()
    engine = LedgerEngine(session_factory, policy, gate, clock)
    catalog = PackageCatalog(session_factory)
    otp = OtpGate(session_factory, OtpPolicy(), notifier, clock)
    return Ledger(
        session_factory=session_factory,
        clock=clock,
        policy=policy,
        engine=engine,
        redemption=RedemptionController(session_factory, engine, policy, clock),
        catalog=catalog,
        topups=TopUpWorkflow(session_factory, engine, catalog, gate, clock),
        otp=otp,
        accounts=AccountService(session_factory, engine, otp, gate, policy),
        notifier=notifier,
    )


async def create_member(ledger: Ledger, email: str = "member@mail.com") -> int:
    """Account plus both wallets, without going through the OTP gate."""
    async with ledger.session_factory() as session, session.begin():
        account = Account(email=email, name="Member")
        session.add(account)
        await session.flush()
        await ledger.engine.open_wallet(session, account.id, WalletType.funding)
        await ledger.engine.open_wallet(session, account.id, WalletType.redeem)
        return account.id


async def create_package(
    ledger: Ledger,
    *,
    credits: int = 50,
    bonus_credits: int = 0,
    price: str = "100",
    active: bool = True,
    slug: str = "PACK_50",
) -> int:
    async with ledger.session_factory() as session, session.begin():
        package = CreditPackage(
            slug=slug,
            name=f"{credits} Credit Pack",
            credits=credits,
            bonus_credits=bonus_credits,
            price=Decimal(price),
            is_popular=False,
            is_active=active,
            sort_order=10,
        )
        session.add(package)
        await session.flush()
        return package.id


async def wallet_row(ledger: Ledger, user_id: int, wallet_type: WalletType) -> Wallet:
    async with ledger.session_factory() as session:
        return (
            await session.execute(
                select(Wallet).where(Wallet.user_id == user_id, Wallet.wallet_type == wallet_type.value)
            )
        ).scalar_one()


async def ledger_sum(ledger: Ledger, user_id: int, wallet_type: WalletType) -> int:
    """Balance reconstructed from the transaction log alone."""
    async with ledger.session_factory() as session:
        rows = await session.scalars(
            select(CreditTransaction).where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.wallet_type == wallet_type.value,
            )
        )
        return sum(row.signed_amount for row in rows)


async def transaction_count(ledger: Ledger, user_id: int) -> int:
    async with ledger.session_factory() as session:
        return await session.scalar(
            select(func.count(CreditTransaction.id)).where(CreditTransaction.user_id == user_id)
        )
