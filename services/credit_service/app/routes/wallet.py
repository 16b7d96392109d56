from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_current_actor, get_ledger, get_redemption_controller
from ..schemas import (
    BalanceResponse,
    FundingWalletDetails,
    MutationResponse,
    RedeemWalletDetails,
    RedemptionResponse,
    RedemptionStatusResponse,
    SpendRequest,
)
from ..services import Actor, LedgerEngine, MutationResult, RedemptionController
from ..services.ledger import BalanceSnapshot

router = APIRouter()


def balance_response(snapshot: BalanceSnapshot) -> BalanceResponse:
    return BalanceResponse(
        funding_balance=snapshot.funding_balance,
        redeem_balance=snapshot.redeem_balance,
        total_credits=snapshot.total_credits,
        funding=FundingWalletDetails(
            balance=snapshot.funding_balance,
            total_purchased=snapshot.total_purchased,
            total_spent=snapshot.total_spent,
        ),
        redeem=RedeemWalletDetails(
            balance=snapshot.redeem_balance,
            limit=snapshot.credit_limit,
            next_redemption=snapshot.next_redemption,
        ),
    )


def mutation_response(result: MutationResult) -> MutationResponse:
    return MutationResponse(
        wallet_type=result.wallet_type,
        transaction_type=result.transaction_type,
        delta=result.delta,
        new_balance=result.new_balance,
        transaction_id=result.transaction_id,
    )


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> BalanceResponse:
    return balance_response(await ledger.get_balances(actor.user_id))


@router.get("/redeem", response_model=RedemptionStatusResponse)
async def redemption_status(
    actor: Actor = Depends(get_current_actor),
    controller: RedemptionController = Depends(get_redemption_controller),
) -> RedemptionStatusResponse:
    state = await controller.status(actor.user_id)
    return RedemptionStatusResponse(
        eligible=state.eligible,
        available_at=state.available_at,
        retry_after_seconds=state.retry_after_seconds,
    )


@router.post("/redeem", response_model=RedemptionResponse)
async def redeem(
    actor: Actor = Depends(get_current_actor),
    controller: RedemptionController = Depends(get_redemption_controller),
) -> RedemptionResponse:
    result = await controller.redeem(actor.user_id)
    return RedemptionResponse(
        credited=result.credited,
        new_balance=result.new_balance,
        next_redemption=result.next_redemption,
        transaction_id=result.transaction_id,
    )


@router.post("/spend", response_model=MutationResponse)
async def spend(
    payload: SpendRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> MutationResponse:
    result = await ledger.spend(actor.user_id, payload.wallet_type, payload.amount, payload.description)
    return mutation_response(result)
