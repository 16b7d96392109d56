from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from services.credit_service.app.errors import (
    AlreadyResolved,
    InvalidTransition,
    NotFound,
    NotOwner,
    PackageNotFound,
    PaymentMethodUnavailable,
    PendingRequestExists,
    ReasonRequired,
    Unauthorized,
)
from services.credit_service.app.models import TopUpStatus, TransactionType, WalletType
from services.credit_service.app.services import Actor, TransactionFilters
from services.credit_service.app.services.topups import CreatedTopUp, request_number_for

from .conftest import create_member, create_package, ledger_sum, transaction_count, wallet_row

REVIEWER = Actor(user_id=700, role="SUPER_ADMIN")
MEMBER = Actor(user_id=701, role="USER")


@pytest.mark.asyncio
async def test_create_snapshots_package_and_numbers_request(ledger):
    user_id = await create_member(ledger)
    package_id = await create_package(ledger, credits=50, bonus_credits=5, price="100")

    created = await ledger.topups.create(user_id, package_id, "BANK_TRANSFER")

    request = created.request
    assert request.status == TopUpStatus.pending.value
    assert request.request_number == "TXN-2026-00001"
    assert request.credits == 50
    assert request.bonus_credits == 5
    assert request.total_credits == 55
    assert request.amount == Decimal("100")
    assert created.payment.method == "BANK_TRANSFER"
    assert await transaction_count(ledger, user_id) == 0


@pytest.mark.asyncio
async def test_one_pending_request_per_member(ledger):
    user_id = await create_member(ledger)
    package_id = await create_package(ledger)
    first = await ledger.topups.create(user_id, package_id, "JAZZCASH")

    with pytest.raises(PendingRequestExists) as excinfo:
        await ledger.topups.create(user_id, package_id, "JAZZCASH")
    assert excinfo.value.context["pending_request_id"] == first.request.id

    await ledger.topups.cancel(first.request.id, user_id)
    second = await ledger.topups.create(user_id, package_id, "EASYPAISA")
    assert second.request.request_number == "TXN-2026-00002"


@pytest.mark.asyncio
async def test_create_rejects_inactive_package_and_unknown_method(ledger):
    user_id = await create_member(ledger)
    retired = await create_package(ledger, active=False, slug="PACK_RETIRED")
    package_id = await create_package(ledger)

    with pytest.raises(PackageNotFound):
        await ledger.topups.create(user_id, retired, "BANK_TRANSFER")
    with pytest.raises(PackageNotFound):
        await ledger.topups.create(user_id, 98765, "BANK_TRANSFER")
    with pytest.raises(PaymentMethodUnavailable):
        await ledger.topups.create(user_id, package_id, "CRYPTO")
    with pytest.raises(NotFound):
        await ledger.topups.create(55555, package_id, "BANK_TRANSFER")


@pytest.mark.asyncio
async def test_approve_deposits_snapshot_credits_once(ledger):
    user_id = await create_member(ledger)
    package_id = await create_package(ledger, credits=50, bonus_credits=5)
    created = await ledger.topups.create(user_id, package_id, "BANK_TRANSFER")
    ledger.clock.advance(hours=2)

    approval = await ledger.topups.approve(REVIEWER, created.request.id, admin_notes="Receipt checked")

    assert approval.request.status == TopUpStatus.completed.value
    assert approval.request.processor_id == REVIEWER.user_id
    assert approval.request.admin_notes == "Receipt checked"
    assert approval.mutation.new_balance == 55
    wallet = await wallet_row(ledger, user_id, WalletType.funding)
    assert wallet.balance == 55
    assert wallet.total_purchased == 55
    assert await ledger_sum(ledger, user_id, WalletType.funding) == 55

    page = await ledger.engine.list_transactions(user_id, TransactionFilters(type=TransactionType.top_up))
    assert page.total == 1
    assert page.items[0].reference_type == "TOP_UP_REQUEST"
    assert page.items[0].reference_id == str(created.request.id)
    assert page.items[0].payment_method == "BANK_TRANSFER"
    assert page.items[0].description == "Top-up: 50 Credit Pack (55 credits)"

    with pytest.raises(AlreadyResolved):
        await ledger.topups.approve(REVIEWER, created.request.id)
    assert (await wallet_row(ledger, user_id, WalletType.funding)).balance == 55


@pytest.mark.asyncio
async def test_approval_needs_capability(ledger):
    user_id = await create_member(ledger)
    created = await ledger.topups.create(user_id, await create_package(ledger), "BANK_TRANSFER")

    with pytest.raises(Unauthorized):
        await ledger.topups.approve(MEMBER, created.request.id)
    with pytest.raises(Unauthorized):
        await ledger.topups.reject(MEMBER, created.request.id, "No receipt")
    assert (await wallet_row(ledger, user_id, WalletType.funding)).balance == 0


@pytest.mark.asyncio
async def test_reject_requires_reason_and_leaves_balance(ledger):
    user_id = await create_member(ledger)
    created = await ledger.topups.create(user_id, await create_package(ledger), "BANK_TRANSFER")

    with pytest.raises(ReasonRequired):
        await ledger.topups.reject(REVIEWER, created.request.id, "   ")

    rejected = await ledger.topups.reject(REVIEWER, created.request.id, "Payment not received")

    assert rejected.status == TopUpStatus.rejected.value
    assert rejected.rejection_reason == "Payment not received"
    assert rejected.resolved_at is not None
    assert await transaction_count(ledger, user_id) == 0


@pytest.mark.asyncio
async def test_cancel_is_owner_only_and_pending_only(ledger):
    owner = await create_member(ledger)
    stranger = await create_member(ledger, email="stranger@mail.com")
    created = await ledger.topups.create(owner, await create_package(ledger), "BANK_TRANSFER")

    with pytest.raises(NotOwner) as excinfo:
        await ledger.topups.cancel(created.request.id, stranger)
    assert isinstance(excinfo.value, InvalidTransition)

    await ledger.topups.approve(REVIEWER, created.request.id)
    with pytest.raises(AlreadyResolved) as excinfo:
        await ledger.topups.cancel(created.request.id, owner)
    assert excinfo.value.context["status"] == "COMPLETED"

    with pytest.raises(NotFound):
        await ledger.topups.cancel(424242, owner)


@pytest.mark.asyncio
async def test_cancelled_request_cannot_be_approved(ledger):
    user_id = await create_member(ledger)
    created = await ledger.topups.create(user_id, await create_package(ledger), "BANK_TRANSFER")

    cancelled = await ledger.topups.cancel(created.request.id, user_id)
    assert cancelled.status == TopUpStatus.cancelled.value

    with pytest.raises(AlreadyResolved):
        await ledger.topups.approve(REVIEWER, created.request.id)
    assert (await wallet_row(ledger, user_id, WalletType.funding)).balance == 0


@pytest.mark.asyncio
async def test_racing_approve_and_cancel_resolve_once(ledger):
    user_id = await create_member(ledger)
    created = await ledger.topups.create(user_id, await create_package(ledger, credits=50), "BANK_TRANSFER")

    results = await asyncio.gather(
        ledger.topups.approve(REVIEWER, created.request.id),
        ledger.topups.cancel(created.request.id, user_id),
        return_exceptions=True,
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyResolved)

    balance = (await wallet_row(ledger, user_id, WalletType.funding)).balance
    approved = not isinstance(results[0], Exception)
    assert balance == (50 if approved else 0)
    assert await transaction_count(ledger, user_id) == (1 if approved else 0)


@pytest.mark.asyncio
async def test_admin_listing_stats_and_pending_count(ledger):
    package_id = await create_package(ledger)
    first = await create_member(ledger, email="first@mail.com")
    second = await create_member(ledger, email="second@mail.com")
    third = await create_member(ledger, email="third@mail.com")
    a = await ledger.topups.create(first, package_id, "BANK_TRANSFER")
    b = await ledger.topups.create(second, package_id, "JAZZCASH")
    await ledger.topups.create(third, package_id, "EASYPAISA")
    await ledger.topups.approve(REVIEWER, a.request.id)
    await ledger.topups.reject(REVIEWER, b.request.id, "Wrong amount")

    assert await ledger.topups.pending_count(REVIEWER) == 1

    page = await ledger.topups.list_requests(REVIEWER, page=1, limit=2)
    assert page.total == 3
    assert page.pages == 2
    assert page.stats == {"pending": 1, "completed": 1, "rejected": 1, "cancelled": 0, "total": 3}

    pending = await ledger.topups.list_requests(REVIEWER, status=TopUpStatus.pending)
    assert [r.user_id for r in pending.items] == [third]

    mine = await ledger.topups.list_for_user(second)
    assert [r.status for r in mine] == ["REJECTED"]

    fetched = await ledger.topups.get_request(REVIEWER, a.request.id)
    assert fetched.status == "COMPLETED"
    with pytest.raises(Unauthorized):
        await ledger.topups.pending_count(MEMBER)


@pytest.mark.asyncio
async def test_options_list_active_packages_and_methods(ledger):
    await create_package(ledger, active=False, slug="PACK_HIDDEN")

    options = await ledger.catalog.options()

    assert [p.slug for p in options.packages] == ["PACK_5", "PACK_7", "PACK_11", "PACK_17", "PACK_23"]
    assert {m.method for m in options.payment_methods} == {"BANK_TRANSFER", "JAZZCASH", "EASYPAISA"}


@pytest.mark.asyncio
async def test_concurrent_creates_by_different_members_all_succeed(ledger):
    package_id = await create_package(ledger)
    members = [await create_member(ledger, email=f"buyer{i}@mail.com") for i in range(4)]

    results = await asyncio.gather(
        *(ledger.topups.create(user_id, package_id, "BANK_TRANSFER") for user_id in members),
        return_exceptions=True,
    )

    assert all(isinstance(r, CreatedTopUp) for r in results)
    numbers = {r.request.request_number for r in results}
    assert len(numbers) == 4
    assert all(r.request.request_number == request_number_for(2026, r.request.id) for r in results)


@pytest.mark.asyncio
async def test_concurrent_creates_by_one_member_leave_one_pending(ledger):
    package_id = await create_package(ledger)
    user_id = await create_member(ledger)

    results = await asyncio.gather(
        *(ledger.topups.create(user_id, package_id, "JAZZCASH") for _ in range(3)),
        return_exceptions=True,
    )

    assert sum(isinstance(r, CreatedTopUp) for r in results) == 1
    assert sum(isinstance(r, PendingRequestExists) for r in results) == 2
    assert await ledger.topups.pending_count(REVIEWER) == 1


def test_request_numbers_keep_growing_past_five_digits():
    assert request_number_for(2026, 7) == "TXN-2026-00007"
    assert request_number_for(2026, 123456) == "TXN-2026-123456"
