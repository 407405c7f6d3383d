"""Financial endpoints: balance, transaction history, summaries and export."""

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query, Response

from marketplace_ledger.api.dependencies import Ledger, UserId
from marketplace_ledger.api.schemas import (
    BalanceResponse,
    FinancialSummaryResponse,
    TransactionListResponse,
    TransactionResponse,
)
from marketplace_ledger.services import TransactionType

router = APIRouter(prefix="/financial", tags=["financial"])


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(user_id: UserId, ledger: Ledger) -> BalanceResponse:
    balance = await ledger.get_balance(user_id)
    await ledger.db.commit()
    return BalanceResponse.model_validate(balance)


@router.get("/transactions", response_model=TransactionListResponse)
async def get_transactions(
    user_id: UserId,
    ledger: Ledger,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    transaction_type: Annotated[TransactionType | None, Query(alias="type")] = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> TransactionListResponse:
    """Newest-first page of the caller's ledger entries."""
    page = await ledger.get_transaction_history(
        user_id,
        limit=limit,
        offset=offset,
        transaction_type=transaction_type.value if transaction_type else None,
        start=start,
        end=end,
    )
    return TransactionListResponse(
        items=[TransactionResponse.model_validate(t) for t in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/summary", response_model=FinancialSummaryResponse)
async def get_summary(
    user_id: UserId,
    ledger: Ledger,
    start: datetime | None = None,
    end: datetime | None = None,
) -> FinancialSummaryResponse:
    summary = await ledger.get_financial_summary(user_id, start, end)
    await ledger.db.commit()
    return FinancialSummaryResponse(
        user_id=summary.user_id,
        currency=summary.currency,
        earnings_count=summary.earnings_count,
        earnings_total=summary.earnings_total,
        payouts_count=summary.payouts_count,
        payouts_total=summary.payouts_total,
        refunds_count=summary.refunds_count,
        refunds_total=summary.refunds_total,
        net=summary.net,
        earnings_by_type=summary.earnings_by_type,
    )


@router.get("/export")
async def export_transactions(
    user_id: UserId,
    ledger: Ledger,
    start: datetime | None = None,
    end: datetime | None = None,
) -> Response:
    """The caller's ledger as a CSV download."""
    content = await ledger.export_transactions_csv(user_id, start, end)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="transactions-{user_id}.csv"'},
    )
