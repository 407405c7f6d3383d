"""Payment API endpoints: quotes, intents, status and the gateway webhook."""

import json
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, Request, status

from marketplace_ledger.api.dependencies import (
    AppSettings,
    Calculator,
    Payments,
    Reconciler,
    UserId,
)
from marketplace_ledger.api.schemas import (
    ErrorResponse,
    FeeBreakdown,
    PaymentCreate,
    PaymentCreateResponse,
    PaymentListResponse,
    PaymentResponse,
    QuoteRequest,
    WebhookResponse,
)
from marketplace_ledger.calculators import Money, PricingTier
from marketplace_ledger.exceptions import ValidationError
from marketplace_ledger.providers import SIGNATURE_HEADER, verify_webhook_signature
from marketplace_ledger.services import (
    ENTITY_ROUTES,
    EntityRef,
    PayerContact,
    ReconciliationOutcome,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


def _pricing_tier(payload: QuoteRequest) -> PricingTier | None:
    if payload.percentage_tier or payload.subscription_tier:
        return PricingTier(
            percentage_tier=payload.percentage_tier,
            subscription_tier=payload.subscription_tier,
        )
    return None


@router.post(
    "/quote",
    response_model=FeeBreakdown,
    responses={400: {"model": ErrorResponse}},
)
async def quote_payment(payload: QuoteRequest, calculator: Calculator) -> FeeBreakdown:
    """Fee breakdown for an amount, without creating anything."""
    try:
        fees = calculator.calculate(
            Money(payload.amount, payload.currency),
            ENTITY_ROUTES[payload.entity_type].fee_category,
            _pricing_tier(payload),
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    return FeeBreakdown.from_calculation(fees)


@router.post(
    "",
    response_model=PaymentCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def create_payment(
    payload: PaymentCreate,
    user_id: UserId,
    payments: Payments,
) -> PaymentCreateResponse:
    """Create a payment intent and return the gateway checkout."""
    secondary_id = payload.secondary_id
    if payload.entity_type.value == "digital_product" and not secondary_id:
        secondary_id = str(user_id)
    entity = EntityRef(payload.entity_type, payload.entity_id, secondary_id)

    result = await payments.create_payment(
        entity,
        Money(payload.amount, payload.currency),
        PayerContact(
            user_id=user_id,
            phone=payload.phone,
            email=payload.email,
            name=payload.name,
        ),
        payee_id=payload.payee_id,
        pricing_tier=_pricing_tier(payload),
        description=payload.description,
    )
    return PaymentCreateResponse(
        payment_id=result.payment_id,
        order_id=result.order_id,
        status=result.status,
        checkout_url=result.checkout_url,
        fees=FeeBreakdown.from_calculation(result.fees),
    )


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    user_id: UserId,
    payments: Payments,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PaymentListResponse:
    """List the caller's payments, newest first."""
    items = await payments.list_payments(user_id, limit=limit, offset=offset)
    return PaymentListResponse(items=[PaymentResponse.model_validate(p) for p in items])


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
)
async def payment_webhook(
    request: Request,
    reconciler: Reconciler,
    settings: AppSettings,
) -> WebhookResponse:
    """Gateway payment notification.

    The raw body must carry a valid HMAC-SHA256 signature. Duplicate and
    unrecognised notifications are acknowledged with 200 so the gateway
    stops retrying.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_webhook_signature(body, signature, settings.gateway_webhook_secret):
        logger.warning("Rejected payment webhook with invalid signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        )

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body is not valid JSON",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook body must be a JSON object",
        )

    # Some deliveries wrap the notification in a "data" envelope
    data = payload["data"] if isinstance(payload.get("data"), dict) else payload
    payment_id = data.get("payment_id")
    gateway_status = data.get("status")
    if not payment_id or not gateway_status:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook requires payment_id and status",
        )

    result = await reconciler.handle_gateway_notification(
        str(payment_id),
        data.get("order_id"),
        str(gateway_status),
        data.get("transaction_id"),
    )
    if result.outcome is ReconciliationOutcome.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Payment not found",
        )
    return WebhookResponse(status="ok", outcome=result.outcome.value)


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payment_status(
    user_id: UserId,
    payments: Payments,
    payment_id: Annotated[UUID, Path()],
) -> PaymentResponse:
    """Payment status; polls the gateway while the payment is open."""
    await payments.check_payment_status(payment_id, user_id)
    payment = await payments.get_payment(payment_id, user_id)
    return PaymentResponse.model_validate(payment)
