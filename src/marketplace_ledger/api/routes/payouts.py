"""Payout API endpoints for creators and operators."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from marketplace_ledger.api.dependencies import Payouts, UserId
from marketplace_ledger.api.schemas import (
    EarningsSummaryResponse,
    ErrorResponse,
    PayoutAction,
    PayoutCreate,
    PayoutListResponse,
    PayoutMethodCreate,
    PayoutMethodResponse,
    PayoutResponse,
)

router = APIRouter(prefix="/payouts", tags=["payouts"])

# Operator actions. Authenticating operators is left to the deployment's gateway.
operator_router = APIRouter(prefix="/operator/payouts", tags=["operator"])


# ============================================================================
# Payout methods
# ============================================================================


@router.get("/methods", response_model=list[PayoutMethodResponse])
async def list_payout_methods(user_id: UserId, payouts: Payouts) -> list[PayoutMethodResponse]:
    methods = await payouts.list_payout_methods(user_id)
    return [PayoutMethodResponse.model_validate(m) for m in methods]


@router.post(
    "/methods",
    response_model=PayoutMethodResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def add_payout_method(
    payload: PayoutMethodCreate,
    user_id: UserId,
    payouts: Payouts,
) -> PayoutMethodResponse:
    method = await payouts.add_payout_method(user_id, **payload.model_dump())
    return PayoutMethodResponse.model_validate(method)


@router.post(
    "/methods/{method_id}/default",
    response_model=PayoutMethodResponse,
    responses={404: {"model": ErrorResponse}},
)
async def set_default_payout_method(
    user_id: UserId,
    payouts: Payouts,
    method_id: Annotated[UUID, Path()],
) -> PayoutMethodResponse:
    method = await payouts.set_default_payout_method(user_id, method_id)
    return PayoutMethodResponse.model_validate(method)


@router.delete(
    "/methods/{method_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_payout_method(
    user_id: UserId,
    payouts: Payouts,
    method_id: Annotated[UUID, Path()],
) -> None:
    await payouts.delete_payout_method(user_id, method_id)


# ============================================================================
# Creator payouts
# ============================================================================


@router.get("/earnings", response_model=EarningsSummaryResponse)
async def get_earnings_summary(
    user_id: UserId,
    payouts: Payouts,
    currency: Annotated[str | None, Query(min_length=3, max_length=3)] = None,
) -> EarningsSummaryResponse:
    """Where the caller's earnings currently are."""
    summary = await payouts.get_earnings_summary(user_id, currency)
    return EarningsSummaryResponse(
        creator_id=summary.creator_id,
        currency=summary.currency,
        total_earnings=summary.total_earnings,
        available_earnings=summary.available_earnings,
        in_payout=summary.in_payout,
        paid_out=summary.paid_out,
        awaiting_collection=summary.awaiting_collection,
        recent_payouts=[PayoutResponse.model_validate(p) for p in summary.payouts],
    )


@router.post(
    "",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def request_payout(
    payload: PayoutCreate,
    user_id: UserId,
    payouts: Payouts,
) -> PayoutResponse:
    """Reserve available earnings for a new payout."""
    payout = await payouts.request_payout(
        user_id,
        payload.payout_method_id,
        amount=payload.amount,
        currency=payload.currency,
        notes=payload.notes,
    )
    return PayoutResponse.model_validate(payout)


@router.get("", response_model=PayoutListResponse)
async def list_payouts(
    user_id: UserId,
    payouts: Payouts,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PayoutListResponse:
    items = await payouts.list_payouts(user_id, status_filter, limit=limit, offset=offset)
    return PayoutListResponse(items=[PayoutResponse.model_validate(p) for p in items])


@router.get(
    "/{payout_id}",
    response_model=PayoutResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payout(
    user_id: UserId,
    payouts: Payouts,
    payout_id: Annotated[UUID, Path()],
) -> PayoutResponse:
    return PayoutResponse.model_validate(await payouts.get_payout(payout_id, user_id))


@router.post(
    "/{payout_id}/cancel",
    response_model=PayoutResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_own_payout(
    user_id: UserId,
    payouts: Payouts,
    payout_id: Annotated[UUID, Path()],
    payload: PayoutAction | None = None,
) -> PayoutResponse:
    """Creator cancels their own pending payout."""
    payout = await payouts.cancel_payout(
        payout_id, notes=payload.notes if payload else None, creator_id=user_id
    )
    return PayoutResponse.model_validate(payout)


# ============================================================================
# Operator actions
# ============================================================================


@operator_router.get("", response_model=PayoutListResponse)
async def list_all_payouts(
    payouts: Payouts,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PayoutListResponse:
    items = await payouts.list_payouts(None, status_filter, limit=limit, offset=offset)
    return PayoutListResponse(items=[PayoutResponse.model_validate(p) for p in items])


@operator_router.post(
    "/{payout_id}/process",
    response_model=PayoutResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def process_payout(
    payouts: Payouts,
    payout_id: Annotated[UUID, Path()],
    payload: PayoutAction | None = None,
) -> PayoutResponse:
    payout = await payouts.process_payout(payout_id, payload.notes if payload else None)
    return PayoutResponse.model_validate(payout)


@operator_router.post(
    "/{payout_id}/complete",
    response_model=PayoutResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def complete_payout(
    payouts: Payouts,
    payout_id: Annotated[UUID, Path()],
    payload: PayoutAction | None = None,
) -> PayoutResponse:
    payout = await payouts.complete_payout(payout_id, payload.notes if payload else None)
    return PayoutResponse.model_validate(payout)


@operator_router.post(
    "/{payout_id}/cancel",
    response_model=PayoutResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_payout(
    payouts: Payouts,
    payout_id: Annotated[UUID, Path()],
    payload: PayoutAction | None = None,
) -> PayoutResponse:
    payout = await payouts.cancel_payout(payout_id, notes=payload.notes if payload else None)
    return PayoutResponse.model_validate(payout)
