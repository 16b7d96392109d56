from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .core.clock import Clock, utcnow
from .core.policy import LedgerPolicy, OtpPolicy
from .db.session import async_session_factory
from .services import (
    AccessGate,
    AccountService,
    Actor,
    LedgerEngine,
    OtpGate,
    OtpNotifier,
    PackageCatalog,
    RedemptionController,
    RoleCapabilityGate,
    TopUpWorkflow,
)
from .services.otp import LogOtpNotifier
from .settings import credit_settings

DEFAULT_ROLE = "USER"


def get_current_actor(request: Request) -> Actor:
    """Resolve the caller from a JWT bearer token issued by the identity service.

    ``sub`` must be the numeric user id; ``role`` defaults to a plain member
    when the claim is absent.
    """
    settings = credit_settings()
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    try:
        decoded = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.warning(f"credit.auth.jwt_decode_failed error={exc}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    scope = decoded.get("scope")
    if scope not in settings.accepted_scopes:
        logger.info(f"credit.auth.scope_rejected scope={scope}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token scope")

    sub = decoded.get("sub")
    if sub is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject")
    if not (isinstance(sub, str) and sub.isdigit()):
        logger.info(f"credit.auth.unsupported_subject_format subject={sub}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unsupported subject format (expected numeric)")

    return Actor(user_id=int(sub), role=str(decoded.get("role") or DEFAULT_ROLE))


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_clock() -> Clock:
    return utcnow


def get_otp_notifier() -> OtpNotifier:
    return LogOtpNotifier()


def get_access_gate() -> AccessGate:
    return RoleCapabilityGate(credit_settings().capability_roles)


def get_ledger_policy() -> LedgerPolicy:
    return LedgerPolicy.from_settings(credit_settings())


def get_otp_policy() -> OtpPolicy:
    return OtpPolicy.from_settings(credit_settings())


def get_ledger(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    gate: AccessGate = Depends(get_access_gate),
    clock: Clock = Depends(get_clock),
) -> LedgerEngine:
    return LedgerEngine(session_factory, policy, gate, clock)


def get_redemption_controller(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ledger: LedgerEngine = Depends(get_ledger),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    clock: Clock = Depends(get_clock),
) -> RedemptionController:
    return RedemptionController(session_factory, ledger, policy, clock)


def get_catalog(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PackageCatalog:
    return PackageCatalog(session_factory)


def get_topup_workflow(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ledger: LedgerEngine = Depends(get_ledger),
    catalog: PackageCatalog = Depends(get_catalog),
    gate: AccessGate = Depends(get_access_gate),
    policy: LedgerPolicy = Depends(get_ledger_policy),
    clock: Clock = Depends(get_clock),
) -> TopUpWorkflow:
    return TopUpWorkflow(
        session_factory,
        ledger,
        catalog,
        gate,
        clock,
        default_page_size=policy.default_page_size,
        max_page_size=policy.max_page_size,
    )


def get_otp_gate(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    policy: OtpPolicy = Depends(get_otp_policy),
    notifier: OtpNotifier = Depends(get_otp_notifier),
    clock: Clock = Depends(get_clock),
) -> OtpGate:
    return OtpGate(session_factory, policy, notifier, clock)


def get_account_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    ledger: LedgerEngine = Depends(get_ledger),
    otp: OtpGate = Depends(get_otp_gate),
    gate: AccessGate = Depends(get_access_gate),
    policy: LedgerPolicy = Depends(get_ledger_policy),
) -> AccountService:
    return AccountService(session_factory, ledger, otp, gate, policy)
