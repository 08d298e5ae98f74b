"""
Transactions router.

Mounts under ``/api/transactions`` (prefix set in ``main.py``).

Endpoints
---------
GET  /{tier_kind}/{tier_id}          — Transaction history, newest first.
GET  /{tier_kind}/{tier_id}/wallet   — Balance summary plus recent activity.
POST /expenses                       — Record money spent by a tier.
POST /{id}/complete                  — Settle a pending expense.
POST /{id}/cancel                    — Cancel a pending expense (funds restored).
POST /{id}/refund                    — Refund a completed expense.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.common import ErrorResponse, PaginationParams, TierKind, TierRef
from budget_ledger.schemas.transaction import (
    ExpenseCreate,
    ExpenseResult,
    RefundCreate,
    TransactionPage,
    WalletResponse,
)
from budget_ledger.services import transaction_service
from budget_ledger.services.identity_service import get_actor_id
from budget_ledger.utils.constants import TRANSACTION_STATUSES, TRANSACTION_TYPES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Transactions"])

_TYPES_PATTERN = "^(" + "|".join(TRANSACTION_TYPES) + ")$"
_STATUSES_PATTERN = "^(" + "|".join(TRANSACTION_STATUSES) + ")$"


def _tier_ref(
    tier_kind: Annotated[TierKind, Path(description="region, organization or farmer.")],
    tier_id: Annotated[str, Path(description="Tier identifier.", min_length=1, max_length=64)],
) -> TierRef:
    return TierRef(kind=tier_kind, id=tier_id)


def _pagination_params(
    page: Annotated[int, Query(description="Page number (1-based).", ge=1)] = 1,
    page_size: Annotated[int, Query(description="Rows per page (max 200).", ge=1, le=200)] = 20,
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size)


@router.get(
    "/{tier_kind}/{tier_id}",
    response_model=TransactionPage,
    summary="List a tier's transactions",
    description=(
        "Allocations, expenses, refunds and request settlements affecting the "
        "tier, newest first, inside a bounded lookback window."
    ),
)
def list_transactions(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    pagination: Annotated[PaginationParams, Depends(_pagination_params)],
    db: Annotated[Session, Depends(get_db)],
    fiscal_year: Annotated[int | None, Query(ge=2000, le=2100)] = None,
    lookback_days: Annotated[
        int | None,
        Query(description="History window in days (capped by configuration).", ge=1),
    ] = None,
    transaction_type: Annotated[str | None, Query(pattern=_TYPES_PATTERN)] = None,
    status_filter: Annotated[
        str | None, Query(alias="status", pattern=_STATUSES_PATTERN)
    ] = None,
) -> TransactionPage:
    logger.debug("GET /transactions/%s page=%d", tier.label, pagination.page)
    return transaction_service.list_transactions(
        db,
        tier,
        pagination,
        fiscal_year=fiscal_year,
        lookback_days=lookback_days,
        transaction_type=transaction_type,
        status=status_filter,
    )


@router.get(
    "/{tier_kind}/{tier_id}/wallet",
    response_model=WalletResponse,
    summary="Wallet view of a tier",
    description="Balance summary, recent transactions and the tier's pending requests.",
)
def get_wallet(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> WalletResponse:
    logger.debug("GET /transactions/%s/wallet fy=%d", tier.label, fiscal_year)
    return transaction_service.get_wallet(db, tier, fiscal_year)


@router.post(
    "/expenses",
    response_model=ExpenseResult,
    status_code=status.HTTP_201_CREATED,
    summary="Record an expense",
    description=(
        "Debits the tier's remaining balance.  With ``pending: true`` the funds "
        "are reserved and the expense can later be completed or cancelled."
    ),
    responses={
        401: {"description": "Missing X-Actor-Id header."},
        404: {"model": ErrorResponse, "description": "Tier has no budget."},
        409: {"model": ErrorResponse, "description": "Insufficient funds."},
    },
)
def record_expense(
    body: ExpenseCreate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> ExpenseResult:
    """Record an expense for a tier.

    Args:
        body: Tier, fiscal year, amount, description, category and date.
        db: Database session.
        actor_id: Caller identity.
    """
    logger.debug("POST /transactions/expenses %s amount=%s", body.tier.label, body.amount)
    return transaction_service.record_expense(
        db,
        body.tier,
        body.fiscal_year,
        body.amount,
        body.description,
        category=body.category,
        expense_date=transaction_service.expense_datetime(body.expense_date),
        actor_id=actor_id,
        pending=body.pending,
        idempotency_key=body.idempotency_key,
    )


@router.post(
    "/{transaction_id}/complete",
    response_model=ExpenseResult,
    summary="Complete a pending expense",
    responses={
        404: {"model": ErrorResponse, "description": "Transaction not found."},
        409: {"model": ErrorResponse, "description": "Not a pending expense."},
    },
)
def complete_transaction(
    transaction_id: Annotated[int, Path(ge=1)],
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> ExpenseResult:
    logger.debug("POST /transactions/%d/complete by %s", transaction_id, actor_id)
    return transaction_service.complete_transaction(db, transaction_id)


@router.post(
    "/{transaction_id}/cancel",
    response_model=ExpenseResult,
    summary="Cancel a pending expense",
    description="Returns the reserved amount to the tier's remaining balance.",
    responses={
        404: {"model": ErrorResponse, "description": "Transaction not found."},
        409: {"model": ErrorResponse, "description": "Not a pending expense."},
    },
)
def cancel_transaction(
    transaction_id: Annotated[int, Path(ge=1)],
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> ExpenseResult:
    logger.debug("POST /transactions/%d/cancel by %s", transaction_id, actor_id)
    return transaction_service.cancel_transaction(db, transaction_id)


@router.post(
    "/{transaction_id}/refund",
    response_model=ExpenseResult,
    summary="Refund a completed expense",
    description="Credits the expense amount back once; repeating returns the first refund.",
    responses={
        404: {"model": ErrorResponse, "description": "Transaction not found."},
        409: {"model": ErrorResponse, "description": "Not a completed expense."},
    },
)
def refund_expense(
    transaction_id: Annotated[int, Path(ge=1)],
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
    body: Annotated[RefundCreate | None, Body()] = None,
) -> ExpenseResult:
    logger.debug("POST /transactions/%d/refund by %s", transaction_id, actor_id)
    return transaction_service.refund_expense(
        db,
        transaction_id,
        description=body.description if body else None,
        actor_id=actor_id,
    )
