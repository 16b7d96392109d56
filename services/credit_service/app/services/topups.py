from __future__ import annotations

from dataclasses import dataclass, field
from math import ceil
from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.clock import Clock, utcnow
from ..db.unit import atomic
from ..errors import AlreadyResolved, NotFound, NotOwner, PendingRequestExists, ReasonRequired
from ..metrics import topup_transition_total
from ..models import Account, CreditPackage, PaymentSetting, TopUpRequest, TopUpStatus, TransactionType, WalletType
from .access import APPROVE_TOPUP, AccessGate, Actor, require_capability
from .catalog import PackageCatalog
from .ledger import LedgerEngine, MutationResult, observe_mutation

TOP_UP_REFERENCE = "TOP_UP_REQUEST"


def request_number_for(year: int, request_id: int) -> str:
    """Human-facing reference such as ``TXN-2026-00042``; unique because the row id is."""
    return f"TXN-{year}-{request_id:05d}"


@dataclass(frozen=True)
class CreatedTopUp:
    request: TopUpRequest
    package: CreditPackage
    payment: PaymentSetting


@dataclass(frozen=True)
class Approval:
    request: TopUpRequest
    mutation: MutationResult


@dataclass
class TopUpPage:
    items: list[TopUpRequest]
    page: int
    limit: int
    total: int
    stats: dict[str, int] = field(default_factory=dict)

    @property
    def pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0


class TopUpWorkflow:
    """PENDING -> COMPLETED | REJECTED | CANCELLED for member top-up requests.

    Each transition is a conditional update on ``status = 'PENDING'`` inside
    the operation's unit, so of two racing transitions exactly one wins and
    the other observes ``AlreadyResolved``. Approval deposits the credits
    in that same unit.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerEngine,
        catalog: PackageCatalog,
        gate: AccessGate,
        clock: Clock = utcnow,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._catalog = catalog
        self._gate = gate
        self._clock = clock
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size

    async def create(self, user_id: int, package_id: int, payment_method: str) -> CreatedTopUp:
        now = self._clock()
        async with atomic(self._session_factory, "topup_create") as session:
            if await session.get(Account, user_id) is None:
                raise NotFound("Account", user_id=user_id)
            package = await self._catalog.get_package(session, package_id)
            payment = await self._catalog.get_payment_setting(session, payment_method)
            pending_id = await session.scalar(
                select(TopUpRequest.id)
                .where(TopUpRequest.user_id == user_id, TopUpRequest.status == TopUpStatus.pending.value)
                .limit(1)
            )
            if pending_id is not None:
                raise PendingRequestExists(pending_id)

            request = TopUpRequest(
                user_id=user_id,
                package_id=package.id,
                status=TopUpStatus.pending.value,
                credits=package.credits,
                bonus_credits=package.bonus_credits,
                amount=package.price,
                payment_method=payment.method,
                created_at=now,
                updated_at=now,
            )
            session.add(request)
            try:
                await session.flush()
            except IntegrityError as exc:
                # Lost the race against another create for the same member.
                raise PendingRequestExists(None) from exc
            request.request_number = request_number_for(now.year, request.id)
            await session.flush()
        topup_transition_total.labels(status=TopUpStatus.pending.value).inc()
        logger.info(
            f"topup.created user={user_id} request={request.request_number} "
            f"package={package.slug} method={payment.method}"
        )
        return CreatedTopUp(request=request, package=package, payment=payment)

    async def cancel(self, request_id: int, actor_id: int) -> TopUpRequest:
        now = self._clock()
        async with atomic(self._session_factory, "topup_cancel") as session:
            request = await self._transition(
                session,
                request_id,
                TopUpStatus.cancelled,
                owner_id=actor_id,
                resolved_at=now,
                updated_at=now,
            )
        topup_transition_total.labels(status=TopUpStatus.cancelled.value).inc()
        logger.info(f"topup.cancelled request={request.request_number} user={actor_id}")
        return request

    async def approve(self, actor: Actor, request_id: int, admin_notes: str | None = None) -> Approval:
        require_capability(self._gate, actor, APPROVE_TOPUP)
        now = self._clock()
        async with atomic(self._session_factory, "topup_approve") as session:
            request = await self._transition(
                session,
                request_id,
                TopUpStatus.completed,
                processor_id=actor.user_id,
                resolved_at=now,
                updated_at=now,
                admin_notes=admin_notes,
            )
            package = await session.get(CreditPackage, request.package_id)
            credits = request.total_credits
            label = package.name if package is not None else f"package {request.package_id}"
            mutation = await self._ledger.apply(
                session,
                user_id=request.user_id,
                wallet_type=WalletType.funding,
                delta=credits,
                transaction_type=TransactionType.top_up,
                description=f"Top-up: {label} ({credits} credits)",
                reference_type=TOP_UP_REFERENCE,
                reference_id=str(request.id),
                payment_method=request.payment_method,
            )
        observe_mutation(mutation)
        topup_transition_total.labels(status=TopUpStatus.completed.value).inc()
        logger.info(f"topup.approved request={request.request_number} credits={credits} by={actor.user_id}")
        return Approval(request=request, mutation=mutation)

    async def reject(self, actor: Actor, request_id: int, reason: str, admin_notes: str | None = None) -> TopUpRequest:
        require_capability(self._gate, actor, APPROVE_TOPUP)
        if not reason or not reason.strip():
            raise ReasonRequired()
        now = self._clock()
        async with atomic(self._session_factory, "topup_reject") as session:
            request = await self._transition(
                session,
                request_id,
                TopUpStatus.rejected,
                processor_id=actor.user_id,
                resolved_at=now,
                updated_at=now,
                rejection_reason=reason.strip(),
                admin_notes=admin_notes,
            )
        topup_transition_total.labels(status=TopUpStatus.rejected.value).inc()
        logger.info(f"topup.rejected request={request.request_number} by={actor.user_id}")
        return request

    # -- read projections ---------------------------------------------------

    async def list_for_user(self, user_id: int, status: TopUpStatus | None = None) -> list[TopUpRequest]:
        stmt = select(TopUpRequest).where(TopUpRequest.user_id == user_id)
        if status is not None:
            stmt = stmt.where(TopUpRequest.status == status.value)
        async with atomic(self._session_factory, "topup_list_user") as session:
            rows = await session.scalars(stmt.order_by(TopUpRequest.created_at.desc(), TopUpRequest.id.desc()))
            return list(rows)

    async def list_requests(
        self,
        actor: Actor,
        status: TopUpStatus | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> TopUpPage:
        require_capability(self._gate, actor, APPROVE_TOPUP)
        page = max(page, 1)
        limit = max(1, min(limit or self._default_page_size, self._max_page_size))
        conditions = [TopUpRequest.status == status.value] if status is not None else []
        async with atomic(self._session_factory, "topup_list") as session:
            total = await session.scalar(select(func.count(TopUpRequest.id)).where(*conditions))
            items = await session.scalars(
                select(TopUpRequest)
                .where(*conditions)
                .order_by(TopUpRequest.created_at.desc(), TopUpRequest.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            stats = await self._stats(session)
            return TopUpPage(items=list(items), page=page, limit=limit, total=total or 0, stats=stats)

    async def pending_count(self, actor: Actor) -> int:
        require_capability(self._gate, actor, APPROVE_TOPUP)
        async with atomic(self._session_factory, "topup_pending_count") as session:
            count = await session.scalar(
                select(func.count(TopUpRequest.id)).where(TopUpRequest.status == TopUpStatus.pending.value)
            )
        return count or 0

    async def get_request(self, actor: Actor, request_id: int) -> TopUpRequest:
        require_capability(self._gate, actor, APPROVE_TOPUP)
        async with atomic(self._session_factory, "topup_get") as session:
            request = await session.get(TopUpRequest, request_id)
        if request is None:
            raise NotFound("Top-up request", request_id=request_id)
        return request

    # -- internals ----------------------------------------------------------

    async def _transition(
        self,
        session: AsyncSession,
        request_id: int,
        target: TopUpStatus,
        *,
        owner_id: int | None = None,
        **values: Any,
    ) -> TopUpRequest:
        conditions = [TopUpRequest.id == request_id, TopUpRequest.status == TopUpStatus.pending.value]
        if owner_id is not None:
            conditions.append(TopUpRequest.user_id == owner_id)
        result = await session.execute(
            update(TopUpRequest)
            .where(*conditions)
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        request = (
            await session.execute(
                select(TopUpRequest)
                .where(TopUpRequest.id == request_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if result.rowcount == 0:
            if request is None:
                raise NotFound("Top-up request", request_id=request_id)
            if owner_id is not None and request.user_id != owner_id:
                raise NotOwner(request_id)
            logger.info(f"topup.transition.rejected request={request_id} status={request.status} target={target.value}")
            raise AlreadyResolved(request_id, request.status)
        return request

    @staticmethod
    async def _stats(session: AsyncSession) -> dict[str, int]:
        rows = (
            await session.execute(
                select(TopUpRequest.status, func.count(TopUpRequest.id)).group_by(TopUpRequest.status)
            )
        ).all()
        counts = {row[0]: int(row[1]) for row in rows}
        stats = {status.name: counts.get(status.value, 0) for status in TopUpStatus}
        stats["total"] = sum(counts.values())
        return stats
