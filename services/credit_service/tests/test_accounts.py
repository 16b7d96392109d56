from __future__ import annotations

import pytest
from sqlalchemy import func, select

from services.credit_service.app.errors import AccountExists, NotFound, Unauthorized, VerificationRequired
from services.credit_service.app.models import Account, CreditTransaction, OtpPurpose, TopUpRequest, Wallet, WalletType
from services.credit_service.app.services import Actor

from .conftest import create_package, ledger_sum, transaction_count

OWNER = Actor(user_id=1, role="SUPER_ADMIN")
SUPERVISOR = Actor(user_id=2, role="SUPERVISOR")


async def _verified(ledger, email: str) -> None:
    issued = await ledger.otp.issue(email, OtpPurpose.registration)
    await ledger.otp.verify(email, OtpPurpose.registration, issued.code)


async def _count(ledger, model, user_id: int) -> int:
    async with ledger.session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model).where(model.user_id == user_id))


@pytest.mark.asyncio
async def test_register_without_verification_is_refused(ledger):
    with pytest.raises(VerificationRequired):
        await ledger.accounts.register("new@mail.com", "New Member")

    async with ledger.session_factory() as session:
        assert await session.scalar(select(func.count(Account.id))) == 0


@pytest.mark.asyncio
async def test_register_opens_both_wallets_with_welcome_credits(ledger):
    await _verified(ledger, "New@Mail.com")

    opened = await ledger.accounts.register("new@mail.com", "New Member")

    user_id = opened.account.id
    assert opened.account.email == "new@mail.com"
    assert opened.funding_wallet.balance == 0
    assert opened.redeem_wallet.balance == 3
    assert opened.redeem_wallet.credit_limit == 5
    assert opened.welcome_credit.new_balance == 3
    assert await ledger_sum(ledger, user_id, WalletType.redeem) == 3
    assert await transaction_count(ledger, user_id) == 1

    snapshot = await ledger.engine.get_balances(user_id)
    assert snapshot.total_credits == 3


@pytest.mark.asyncio
async def test_verification_is_single_use(ledger):
    await _verified(ledger, "once@mail.com")
    opened = await ledger.accounts.register("once@mail.com")

    with pytest.raises(AccountExists):
        await ledger.accounts.register("once@mail.com")

    ledger.clock.advance(minutes=2)
    await _verified(ledger, "twice@mail.com")
    await ledger.accounts.register("twice@mail.com")
    with pytest.raises(VerificationRequired):
        await ledger.accounts.register("thrice@mail.com")
    assert opened.account.id is not None


@pytest.mark.asyncio
async def test_delete_account_removes_everything_it_owns(ledger):
    await _verified(ledger, "gone@mail.com")
    opened = await ledger.accounts.register("gone@mail.com")
    user_id = opened.account.id
    await ledger.topups.create(user_id, await create_package(ledger), "BANK_TRANSFER")

    with pytest.raises(Unauthorized):
        await ledger.accounts.delete_account(SUPERVISOR, user_id)

    await ledger.accounts.delete_account(OWNER, user_id)

    assert await _count(ledger, Wallet, user_id) == 0
    assert await _count(ledger, CreditTransaction, user_id) == 0
    assert await _count(ledger, TopUpRequest, user_id) == 0
    with pytest.raises(NotFound):
        await ledger.engine.get_balances(user_id)
    with pytest.raises(NotFound):
        await ledger.accounts.delete_account(OWNER, user_id)
