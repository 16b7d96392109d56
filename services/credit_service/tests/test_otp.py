from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from services.credit_service.app.core.policy import OtpPolicy
from services.credit_service.app.errors import (
    AttemptsExhausted,
    Expired,
    InvalidCode,
    NotFound,
    OtpCooldown,
    VerificationRequired,
)
from services.credit_service.app.models import OtpPurpose, OtpRecord
from services.credit_service.app.services import OtpGate

from .conftest import RecordingNotifier

EMAIL = "Someone@Mail.com"


async def _records(ledger, email: str = "someone@mail.com") -> int:
    async with ledger.session_factory() as session:
        return await session.scalar(select(func.count(OtpRecord.id)).where(OtpRecord.email == email))


def _wrong(code: str) -> str:
    return "1" * len(code) if code != "1" * len(code) else "2" * len(code)


@pytest.mark.asyncio
async def test_issue_normalises_email_and_delivers_code(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)

    assert issued.email == "someone@mail.com"
    assert len(issued.code) == 6
    assert issued.code.isdigit()
    assert issued.expires_at == ledger.clock() + OtpPolicy().expiry
    assert ledger.notifier.sent == [issued]
    assert await _records(ledger) == 1


@pytest.mark.asyncio
async def test_reissue_waits_for_cooldown_and_replaces_code(ledger):
    first = await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    ledger.clock.advance(seconds=20)

    with pytest.raises(OtpCooldown) as excinfo:
        await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    assert excinfo.value.context["wait_seconds"] == 40

    ledger.clock.advance(seconds=40)
    second = await ledger.otp.issue(EMAIL, OtpPurpose.registration)

    assert await _records(ledger) == 1
    with pytest.raises(InvalidCode):
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, _wrong(second.code))
    if first.code != second.code:
        with pytest.raises(InvalidCode):
            await ledger.otp.verify(EMAIL, OtpPurpose.registration, first.code)


@pytest.mark.asyncio
async def test_correct_code_on_third_attempt_verifies(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    wrong = _wrong(issued.code)

    with pytest.raises(InvalidCode) as first:
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, wrong)
    with pytest.raises(InvalidCode) as second:
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, wrong)
    verified = await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)

    assert first.value.context["remaining_attempts"] == 2
    assert second.value.context["remaining_attempts"] == 1
    assert verified.verified_at == ledger.clock()


@pytest.mark.asyncio
async def test_fourth_attempt_is_exhausted_and_drops_the_code(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    wrong = _wrong(issued.code)

    for remaining in (2, 1, 0):
        with pytest.raises(InvalidCode) as excinfo:
            await ledger.otp.verify(EMAIL, OtpPurpose.registration, wrong)
        assert excinfo.value.context["remaining_attempts"] == remaining

    with pytest.raises(AttemptsExhausted):
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)
    assert await _records(ledger) == 0

    with pytest.raises(NotFound):
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)


@pytest.mark.asyncio
async def test_expired_code_fails_even_when_correct(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    ledger.clock.advance(minutes=10, seconds=1)

    with pytest.raises(Expired):
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)
    assert await _records(ledger) == 0


@pytest.mark.asyncio
async def test_codes_are_scoped_by_purpose(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)

    with pytest.raises(NotFound):
        await ledger.otp.verify(EMAIL, OtpPurpose.password_reset, issued.code)

    other = await ledger.otp.issue(EMAIL, OtpPurpose.password_reset)
    assert other.purpose == OtpPurpose.password_reset


@pytest.mark.asyncio
async def test_consume_requires_fresh_verification(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)

    async with ledger.session_factory() as session, session.begin():
        with pytest.raises(VerificationRequired):
            await ledger.otp.consume_verified(session, EMAIL, OtpPurpose.registration)

    await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)
    ledger.clock.advance(minutes=31)

    async with ledger.session_factory() as session, session.begin():
        with pytest.raises(VerificationRequired):
            await ledger.otp.consume_verified(session, EMAIL, OtpPurpose.registration)


@pytest.mark.asyncio
async def test_consume_drops_every_record_for_the_key(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)
    await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)
    ledger.clock.advance(minutes=5)

    async with ledger.session_factory() as session, session.begin():
        await ledger.otp.consume_verified(session, EMAIL, OtpPurpose.registration)

    assert await _records(ledger) == 0


@pytest.mark.asyncio
async def test_code_factory_and_policy_are_injectable(session_factory, clock):
    notifier = RecordingNotifier()
    gate = OtpGate(session_factory, OtpPolicy(length=4, max_attempts=1), notifier, clock, code_factory=lambda n: "4321")

    issued = await gate.issue("x@mail.com", OtpPurpose.email_change)
    assert issued.code == "4321"

    with pytest.raises(InvalidCode) as excinfo:
        await gate.verify("x@mail.com", OtpPurpose.email_change, "1234")
    assert excinfo.value.context["remaining_attempts"] == 0
    with pytest.raises(AttemptsExhausted):
        await gate.verify("x@mail.com", OtpPurpose.email_change, "4321")


@pytest.mark.asyncio
async def test_concurrent_wrong_guesses_cannot_exceed_attempt_limit(ledger):
    issued = await ledger.otp.issue(EMAIL, OtpPurpose.registration)

    results = await asyncio.gather(
        *(ledger.otp.verify(EMAIL, OtpPurpose.registration, "000000") for _ in range(8)),
        return_exceptions=True,
    )

    evaluated = [r for r in results if isinstance(r, InvalidCode)]
    refused = [r for r in results if isinstance(r, (AttemptsExhausted, NotFound))]
    assert len(evaluated) == 3
    assert len(refused) == 5
    assert sorted(r.context["remaining_attempts"] for r in evaluated) == [0, 1, 2]
    assert await _records(ledger) == 0

    with pytest.raises(NotFound):
        await ledger.otp.verify(EMAIL, OtpPurpose.registration, issued.code)


@pytest.mark.asyncio
async def test_reissue_drops_stale_verifications_but_keeps_fresh_ones(ledger):
    first = await ledger.otp.issue(EMAIL, OtpPurpose.password_reset)
    await ledger.otp.verify(EMAIL, OtpPurpose.password_reset, first.code)
    ledger.clock.advance(minutes=2)

    await ledger.otp.issue(EMAIL, OtpPurpose.password_reset)
    assert await _records(ledger) == 2

    ledger.clock.advance(minutes=31)
    await ledger.otp.issue(EMAIL, OtpPurpose.password_reset)

    async with ledger.session_factory() as session:
        remaining = (await session.scalars(select(OtpRecord).where(OtpRecord.email == "someone@mail.com"))).all()
    assert [record.verified for record in remaining] == [False]
