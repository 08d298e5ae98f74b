"""
Balances router.

Mounts under ``/api/balances`` (prefix set in ``main.py``).

Endpoints
---------
GET  /{tier_kind}/{tier_id}           — Balance card of one tier (?fiscal_year=2026).
GET  /{tier_kind}/{tier_id}/children  — Child budgets funded by the tier.
POST /regions/{region_id}/fund        — Superadmin top-up from the national pool.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.common import ErrorResponse, TierKind, TierRef
from budget_ledger.schemas.ledger import (
    ChildBudgetsResponse,
    FundingCreate,
    FundingResult,
    TierBudgetResponse,
)
from budget_ledger.services import allocation_service, balance_service
from budget_ledger.services.identity_service import get_actor_id
from budget_ledger.utils.constants import TIER_REGION

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Balances"])


def _tier_ref(
    tier_kind: Annotated[TierKind, Path(description="region, organization or farmer.")],
    tier_id: Annotated[str, Path(description="Tier identifier.", min_length=1, max_length=64)],
) -> TierRef:
    return TierRef(kind=tier_kind, id=tier_id)


@router.get(
    "/{tier_kind}/{tier_id}",
    response_model=TierBudgetResponse,
    summary="Get a tier balance",
    responses={404: {"model": ErrorResponse, "description": "No budget for that year."}},
)
def get_balance(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> TierBudgetResponse:
    """Return total allocation, remaining balance and derived utilization."""
    logger.debug("GET /balances/%s fy=%d", tier.label, fiscal_year)
    return balance_service.get_tier_balance(db, tier, fiscal_year)


@router.get(
    "/{tier_kind}/{tier_id}/children",
    response_model=ChildBudgetsResponse,
    summary="List child budgets",
    description="Budgets allocated from this tier, e.g. the farmers of an organization.",
    responses={404: {"model": ErrorResponse, "description": "No budget for that year."}},
)
def get_children(
    tier: Annotated[TierRef, Depends(_tier_ref)],
    fiscal_year: Annotated[int, Query(description="Budget year.", ge=2000, le=2100)],
    db: Annotated[Session, Depends(get_db)],
) -> ChildBudgetsResponse:
    logger.debug("GET /balances/%s/children fy=%d", tier.label, fiscal_year)
    return balance_service.get_children(db, tier, fiscal_year)


@router.post(
    "/regions/{region_id}/fund",
    response_model=FundingResult,
    summary="Fund a region from the national pool",
    description=(
        "Superadmin top-up: credits the region's total allocation and remaining "
        "balance.  The region budget is created on first funding.  Repeating a "
        "call with the same idempotency key returns the original result."
    ),
    responses={
        401: {"description": "Missing X-Actor-Id header."},
        503: {"model": ErrorResponse, "description": "Concurrent writers kept winning."},
    },
)
def fund_region(
    region_id: Annotated[str, Path(description="Region identifier.", min_length=1, max_length=64)],
    body: FundingCreate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> FundingResult:
    """Top up a region budget.

    Args:
        region_id: Region to fund.
        body: Fiscal year, amount, description and idempotency key.
        db: Database session.
        actor_id: Caller identity.
    """
    logger.debug("POST /balances/regions/%s/fund by %s", region_id, actor_id)
    return allocation_service.fund_tier(
        db,
        TierRef(kind=TIER_REGION, id=region_id),
        body.fiscal_year,
        body.amount,
        description=body.description,
        actor_id=actor_id,
        idempotency_key=body.idempotency_key,
    )
