from __future__ import annotations

from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_current_actor, get_ledger
from ..models import TransactionType, WalletType
from ..schemas import (
    Pagination,
    TransactionListResponse,
    TransactionResponse,
    TransactionSummary,
    TypeTotalsResponse,
)
from ..services import Actor, LedgerEngine, TransactionFilters
from ..services.ledger import TransactionPage

router = APIRouter()


def day_bounds(start_date: date | None, end_date: date | None) -> tuple[datetime | None, datetime | None]:
    """Inclusive UTC range; an end date covers that whole day."""
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None
    return start, end


def transaction_list_response(page: TransactionPage) -> TransactionListResponse:
    def count_of(kind: TransactionType) -> int:
        totals = page.by_type.get(kind.value)
        return totals.count if totals else 0

    return TransactionListResponse(
        items=[TransactionResponse.model_validate(item) for item in page.items],
        pagination=Pagination(page=page.page, limit=page.limit, total=page.total, pages=page.pages),
        summary=TransactionSummary(
            total_credits=page.total_credits,
            total_debits=page.total_debits,
            total_top_ups=count_of(TransactionType.top_up),
            total_purchases=count_of(TransactionType.purchase),
            total_redemptions=count_of(TransactionType.redemption),
        ),
        by_type={key: TypeTotalsResponse(amount=v.amount, count=v.count) for key, v in page.by_type.items()},
        by_wallet_type={key: TypeTotalsResponse(amount=v.amount, count=v.count) for key, v in page.by_wallet_type.items()},
    )


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    type: TransactionType | None = Query(None),
    wallet_type: WalletType | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    actor: Actor = Depends(get_current_actor),
    ledger: LedgerEngine = Depends(get_ledger),
) -> TransactionListResponse:
    start, end = day_bounds(start_date, end_date)
    filters = TransactionFilters(type=type, wallet_type=wallet_type, start=start, end=end)
    result = await ledger.list_transactions(actor.user_id, filters, page=page, limit=limit)
    return transaction_list_response(result)
