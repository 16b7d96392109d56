from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.policy import LedgerPolicy
from ..db.unit import atomic
from ..errors import AccountExists, CreditError, NotFound
from ..metrics import registration_total
from ..models import Account, CreditTransaction, OtpPurpose, TopUpRequest, TransactionType, Wallet, WalletType
from .access import DELETE_USERS, AccessGate, Actor, require_capability
from .ledger import LedgerEngine, MutationResult, observe_mutation
from .otp import OtpGate, normalize_email, mask_email


@dataclass(frozen=True)
class OpenedAccount:
    account: Account
    funding_wallet: Wallet
    redeem_wallet: Wallet
    welcome_credit: MutationResult | None


class AccountService:
    """Opens member accounts with their two wallets once registration was verified."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerEngine,
        otp: OtpGate,
        gate: AccessGate,
        policy: LedgerPolicy,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._otp = otp
        self._gate = gate
        self._policy = policy

    async def register(self, email: str, name: str | None = None) -> OpenedAccount:
        email = normalize_email(email)
        welcome: MutationResult | None = None
        try:
            async with atomic(self._session_factory, "register") as session:
                if await session.scalar(select(Account.id).where(Account.email == email)) is not None:
                    raise AccountExists(email)
                await self._otp.consume_verified(session, email, OtpPurpose.registration)

                account = Account(email=email, name=name)
                session.add(account)
                await session.flush()
                funding = await self._ledger.open_wallet(session, account.id, WalletType.funding)
                redeem = await self._ledger.open_wallet(session, account.id, WalletType.redeem)
                if self._policy.initial_credits > 0:
                    welcome = await self._ledger.apply(
                        session,
                        user_id=account.id,
                        wallet_type=WalletType.redeem,
                        delta=self._policy.initial_credits,
                        transaction_type=TransactionType.bonus,
                        description="Welcome credits",
                    )
                    await session.refresh(redeem)
        except CreditError as exc:
            registration_total.labels(outcome=exc.code).inc()
            raise

        if welcome is not None:
            observe_mutation(welcome)
        registration_total.labels(outcome="created").inc()
        logger.info(f"account.registered user={account.id} email={mask_email(email)}")
        return OpenedAccount(account=account, funding_wallet=funding, redeem_wallet=redeem, welcome_credit=welcome)

    async def delete_account(self, actor: Actor, user_id: int) -> None:
        """Remove an account together with its wallets, ledger rows and top-up requests."""
        require_capability(self._gate, actor, DELETE_USERS)
        async with atomic(self._session_factory, "delete_account") as session:
            if await session.get(Account, user_id) is None:
                raise NotFound("Account", user_id=user_id)
            await session.execute(delete(CreditTransaction).where(CreditTransaction.user_id == user_id))
            await session.execute(delete(TopUpRequest).where(TopUpRequest.user_id == user_id))
            await session.execute(delete(Wallet).where(Wallet.user_id == user_id))
            await session.execute(delete(Account).where(Account.id == user_id))
        logger.info(f"account.deleted user={user_id} by={actor.user_id}")
