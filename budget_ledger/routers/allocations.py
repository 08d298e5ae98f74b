"""
Allocations router.

Mounts under ``/api/allocations`` (prefix set in ``main.py``).

Endpoints
---------
POST /  — Allocate funds from a parent tier to a child tier.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.common import ErrorResponse
from budget_ledger.schemas.ledger import AllocationCreate, AllocationResult
from budget_ledger.services import allocation_service
from budget_ledger.services.identity_service import get_actor_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Allocations"])


@router.post(
    "",
    response_model=AllocationResult,
    status_code=status.HTTP_201_CREATED,
    summary="Allocate funds to a child tier",
    description=(
        "Debits the parent's remaining balance and credits the child's total "
        "allocation and remaining balance in one atomic unit.  Region → "
        "organization and organization → farmer are the valid directions."
    ),
    responses={
        401: {"description": "Missing X-Actor-Id header."},
        404: {"model": ErrorResponse, "description": "Parent has no budget."},
        409: {"model": ErrorResponse, "description": "Insufficient funds or key reuse."},
        422: {"model": ErrorResponse, "description": "Invalid amount, hierarchy or membership."},
        503: {"model": ErrorResponse, "description": "Concurrent writers kept winning."},
        504: {"model": ErrorResponse, "description": "Timed out; nothing applied."},
    },
)
def create_allocation(
    body: AllocationCreate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> AllocationResult:
    """Move funds one level down the hierarchy.

    Args:
        body: Parent, child, fiscal year, amount and optional idempotency key.
        db: Database session.
        actor_id: Caller identity, recorded on both transaction legs.

    Returns:
        Both balances after the move.
    """
    logger.debug(
        "POST /allocations %s -> %s amount=%s by %s",
        body.parent.label, body.child.label, body.amount, actor_id,
    )
    return allocation_service.allocate(
        db,
        body.parent,
        body.child,
        body.fiscal_year,
        body.amount,
        description=body.description,
        actor_id=actor_id,
        idempotency_key=body.idempotency_key,
    )
