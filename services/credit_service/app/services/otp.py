from __future__ import annotations

import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime
from math import ceil
from typing import Callable, Protocol

from loguru import logger
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock, ensure_utc, utcnow
from ..core.policy import OtpPolicy
from ..db.unit import atomic
from ..errors import AttemptsExhausted, CreditError, Expired, InvalidCode, NotFound, OtpCooldown, VerificationRequired
from ..metrics import otp_issue_total, otp_verify_total
from ..models import OtpPurpose, OtpRecord


@dataclass(frozen=True)
class IssuedOtp:
    email: str
    purpose: OtpPurpose
    code: str
    expires_at: datetime


@dataclass(frozen=True)
class VerifiedOtp:
    email: str
    purpose: OtpPurpose
    verified_at: datetime


class OtpNotifier(Protocol):
    async def deliver(self, otp: IssuedOtp) -> None: ...


class LogOtpNotifier:
    """Stand-in delivery channel: records that a code went out, never the code itself."""

    async def deliver(self, otp: IssuedOtp) -> None:
        logger.info(
            f"otp.delivery.queued email={mask_email(otp.email)} purpose={otp.purpose.value} "
            f"expires_at={otp.expires_at.isoformat()}"
        )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}" if domain else "***"


def generate_code(length: int) -> str:
    """Numeric code of exactly ``length`` digits with no leading zero."""
    floor = 10 ** (length - 1)
    return str(floor + secrets.randbelow(9 * floor))


class OtpGate:
    """Short-lived, attempt-limited codes scoped by ``(email, purpose)``.

    Every comparison first claims one of ``max_attempts``. Failures that
    change state (expiry and exhaustion delete the record, a wrong code
    keeps its claimed attempt) are committed before the error is raised.
    Issuing a code also drops verifications that outlived their freshness.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: OtpPolicy,
        notifier: OtpNotifier | None = None,
        clock: Clock = utcnow,
        code_factory: Callable[[int], str] = generate_code,
    ) -> None:
        self._session_factory = session_factory
        self._policy = policy
        self._notifier = notifier or LogOtpNotifier()
        self._clock = clock
        self._code_factory = code_factory

    async def issue(self, email: str, purpose: OtpPurpose) -> IssuedOtp:
        email = normalize_email(email)
        now = self._clock()
        async with atomic(self._session_factory, "otp_issue") as session:
            last_issued = await session.scalar(
                select(func.max(OtpRecord.created_at)).where(
                    OtpRecord.email == email,
                    OtpRecord.purpose == purpose.value,
                )
            )
            if last_issued is not None:
                wait = self._policy.cooldown - (now - ensure_utc(last_issued))
                if wait.total_seconds() > 0:
                    otp_issue_total.labels(purpose=purpose.value, outcome="cooldown").inc()
                    raise OtpCooldown(ceil(wait.total_seconds()))

            await session.execute(
                delete(OtpRecord).where(
                    OtpRecord.email == email,
                    OtpRecord.purpose == purpose.value,
                    or_(
                        OtpRecord.verified.is_(False),
                        OtpRecord.verified_at < now - self._policy.verified_freshness,
                    ),
                )
            )
            issued = IssuedOtp(
                email=email,
                purpose=purpose,
                code=self._code_factory(self._policy.length),
                expires_at=now + self._policy.expiry,
            )
            session.add(
                OtpRecord(
                    email=email,
                    purpose=purpose.value,
                    code=issued.code,
                    expires_at=issued.expires_at,
                    attempts=0,
                    verified=False,
                    created_at=now,
                )
            )
        await self._notifier.deliver(issued)
        otp_issue_total.labels(purpose=purpose.value, outcome="issued").inc()
        logger.info(f"otp.issued email={mask_email(email)} purpose={purpose.value}")
        return issued

    async def verify(self, email: str, purpose: OtpPurpose, code: str) -> VerifiedOtp:
        email = normalize_email(email)
        now = self._clock()
        failure: CreditError | None = None
        async with atomic(self._session_factory, "otp_verify") as session:
            record = await session.scalar(
                select(OtpRecord)
                .where(
                    OtpRecord.email == email,
                    OtpRecord.purpose == purpose.value,
                    OtpRecord.verified.is_(False),
                )
                .order_by(OtpRecord.created_at.desc(), OtpRecord.id.desc())
                .limit(1)
            )
            if record is None:
                failure = NotFound("Verification code", email=email, purpose=purpose.value)
            elif now > ensure_utc(record.expires_at):
                await self._discard(session, record.id)
                failure = Expired()
            else:
                # The limit check and the increment stay one statement.
                claimed = await session.execute(
                    update(OtpRecord)
                    .where(OtpRecord.id == record.id, OtpRecord.attempts < self._policy.max_attempts)
                    .values(attempts=OtpRecord.attempts + 1)
                    .execution_options(synchronize_session=False)
                )
                if claimed.rowcount == 0:
                    await self._discard(session, record.id)
                    failure = AttemptsExhausted(self._policy.max_attempts)
                elif not hmac.compare_digest(record.code, code.strip()):
                    attempts = await session.scalar(select(OtpRecord.attempts).where(OtpRecord.id == record.id))
                    failure = InvalidCode(max(0, self._policy.max_attempts - attempts))
                else:
                    await session.execute(
                        update(OtpRecord)
                        .where(OtpRecord.id == record.id)
                        .values(verified=True, verified_at=now)
                        .execution_options(synchronize_session=False)
                    )

        if failure is not None:
            otp_verify_total.labels(outcome=failure.code).inc()
            logger.info(f"otp.verify.failed email={mask_email(email)} purpose={purpose.value} reason={failure.code}")
            raise failure
        otp_verify_total.labels(outcome="verified").inc()
        logger.info(f"otp.verified email={mask_email(email)} purpose={purpose.value}")
        return VerifiedOtp(email=email, purpose=purpose, verified_at=now)

    @staticmethod
    async def _discard(session: AsyncSession, record_id: int) -> None:
        await session.execute(
            delete(OtpRecord).where(OtpRecord.id == record_id, OtpRecord.verified.is_(False))
        )

    async def consume_verified(self, session: AsyncSession, email: str, purpose: OtpPurpose) -> None:
        """Require a recent verification for the key and drop every record for it, in the caller's unit."""
        email = normalize_email(email)
        since = self._clock() - self._policy.verified_freshness
        verified_id = await session.scalar(
            select(OtpRecord.id)
            .where(
                OtpRecord.email == email,
                OtpRecord.purpose == purpose.value,
                OtpRecord.verified.is_(True),
                OtpRecord.verified_at >= since,
            )
            .limit(1)
        )
        if verified_id is None:
            raise VerificationRequired(email, purpose.value)
        await session.execute(
            delete(OtpRecord).where(OtpRecord.email == email, OtpRecord.purpose == purpose.value)
        )
