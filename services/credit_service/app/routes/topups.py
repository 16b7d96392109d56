from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_catalog, get_current_actor, get_topup_workflow
from ..models import TopUpStatus
from ..schemas import (
    PackageResponse,
    PaymentSettingResponse,
    TopUpCreate,
    TopUpCreatedResponse,
    TopUpOptionsResponse,
    TopUpResponse,
)
from ..services import Actor, PackageCatalog, TopUpWorkflow

router = APIRouter()


@router.get("/options", response_model=TopUpOptionsResponse)
async def topup_options(
    _: Actor = Depends(get_current_actor),
    catalog: PackageCatalog = Depends(get_catalog),
) -> TopUpOptionsResponse:
    options = await catalog.options()
    return TopUpOptionsResponse(
        packages=[PackageResponse.model_validate(p) for p in options.packages],
        payment_methods=[PaymentSettingResponse.model_validate(m) for m in options.payment_methods],
    )


@router.get("", response_model=list[TopUpResponse])
async def my_topups(
    status_filter: TopUpStatus | None = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> list[TopUpResponse]:
    requests = await workflow.list_for_user(actor.user_id, status_filter)
    return [TopUpResponse.model_validate(r) for r in requests]


@router.post("", response_model=TopUpCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_topup(
    payload: TopUpCreate,
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpCreatedResponse:
    created = await workflow.create(actor.user_id, payload.package_id, payload.payment_method.value)
    return TopUpCreatedResponse(
        request=TopUpResponse.model_validate(created.request),
        package=PackageResponse.model_validate(created.package),
        payment_instructions=PaymentSettingResponse.model_validate(created.payment),
    )


@router.post("/{request_id}/cancel", response_model=TopUpResponse)
async def cancel_topup(
    request_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: TopUpWorkflow = Depends(get_topup_workflow),
) -> TopUpResponse:
    request = await workflow.cancel(request_id, actor.user_id)
    return TopUpResponse.model_validate(request)
