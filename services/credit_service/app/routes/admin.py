from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status

from ..dependencies import get_account_service, get_current_actor, get_ledger, get_topup_workflow
from ..models import TopUpStatus, TransactionType, WalletType
from ..schemas import (
    AdjustRequest,
    BalanceResponse,
    GrantRequest,
    MutationResponse,
    OverviewResponse,
    Pagination,
    PendingCountResponse,
    TopUpApprovalResponse,
    TopUpApproveRequest,
    TopUpListResponse,
    TopUpRejectRequest,
    TopUpResponse,
    TopUpStats,
    TransactionListResponse,
)
from ..services import AccountService, Actor, LedgerEngine, TopUpWorkflow, TransactionFilters
from .transactions import day_bounds, transaction_list_response
from .wallet import balance_response, mutation_response

router = APIRouter()


# -- top-up review ------------------------------------------------------------

@router.get("/topups", response_model=TopUpListResponse)
async def list_topups(
    status_filter: TopUpStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpListResponse:
    result = await workflow.list_requests(actor, status_filter, page=page, limit=limit)
    return TopUpListResponse(
        items=[TopUpResponse.model_validate(r) for r in result.items],
        pagination=Pagination(page=result.page, limit=result.limit, total=result.total, pages=result.pages),
        stats=TopUpStats(**result.stats),
    )


@router.get("/topups/pending-count", response_model=PendingCountResponse)
async def pending_topups(
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> PendingCountResponse:
    return PendingCountResponse(pending=await workflow.pending_count(actor))


@router.get("/topups/{request_id}", response_model=TopUpResponse)
async def get_topup(
    request_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpResponse:
    return TopUpResponse.model_validate(await workflow.get_request(actor, request_id))


@router.post("/topups/{request_id}/approve", response_model=TopUpApprovalResponse)
async def approve_topup(
    request_id: int,
    payload: TopUpApproveRequest | None = None,
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpApprovalResponse:
    approval = await workflow.approve(actor, request_id, admin_notes=payload.admin_notes if payload else None)
    return TopUpApprovalResponse(
        request=TopUpResponse.model_validate(approval.request),
        transaction_id=approval.mutation.transaction_id,
        new_balance=approval.mutation.new_balance,
    )


@router.post("/topups/{request_id}/reject", response_model=TopUpResponse)
async def reject_topup(
    request_id: int,
    payload: TopUpRejectRequest,
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpResponse:
    request = await workflow.reject(actor, request_id, payload.reason, admin_notes=payload.admin_notes)
    return TopUpResponse.model_validate(request)


# -- credits ------------------------------------------------------------------

@router.post("/credits/grant", response_model=MutationResponse)
async def grant_credits(
    payload: GrantRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> MutationResponse:
    result = await ledger.grant(actor, payload.user_id, payload.amount, payload.reason)
    return mutation_response(result)


@router.post("/credits/adjust", response_model=BalanceResponse)
async def adjust_credits(
    payload: AdjustRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> BalanceResponse:
    snapshot = await ledger.adjust(
        actor,
        payload.user_id,
        payload.wallet_type,
        balance=payload.balance,
        limit=payload.limit,
        reason=payload.reason,
    )
    return balance_response(snapshot)


@router.get("/credits/overview", response_model=OverviewResponse)
async def credits_overview(
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> OverviewResponse:
    overview = await ledger.overview(actor)
    return OverviewResponse(
        wallet_count=overview.wallet_count,
        funding_total=overview.funding_total,
        redeem_total=overview.redeem_total,
        total_purchased=overview.total_purchased,
        total_spent=overview.total_spent,
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def all_transactions(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    user_id: int | None = Query(None),
    type: TransactionType | None = Query(None),
    wallet_type: WalletType | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    search: str | None = Query(None, max_length=100),
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> TransactionListResponse:
    start, end = day_bounds(start_date, end_date)
    filters = TransactionFilters(
        user_id=user_id,
        type=type,
        wallet_type=wallet_type,
        start=start,
        end=end,
        search=search,
    )
    result = await ledger.list_all_transactions(actor, filters, page=page, limit=limit)
    return transaction_list_response(result)


# -- accounts -----------------------------------------------------------------

@router.delete("/accounts/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    accounts: AccountService = Depends(get_account_service),
) -> Response:
    await accounts.delete_account(actor, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
