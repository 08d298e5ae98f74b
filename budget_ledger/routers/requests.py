"""
Budget requests router.

Mounts under ``/api/requests`` (prefix set in ``main.py``).

Endpoints
---------
GET  /                — List requests (?status=pending&target_kind=organization&target_id=org-a).
POST /                — Submit a request to the tier one level up.
GET  /{id}            — Request detail.
POST /{id}/decision   — Approve or reject a pending request.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.orm import Session

from budget_ledger.database import get_db
from budget_ledger.schemas.budget_request import (
    BudgetRequestCreate,
    BudgetRequestListResponse,
    BudgetRequestResponse,
    DecisionCreate,
    DecisionResult,
    RequestFilterParams,
)
from budget_ledger.schemas.common import (
    ErrorResponse,
    PaginationParams,
    RequestTargetKind,
    TierKind,
    TierRef,
)
from budget_ledger.services import request_service
from budget_ledger.services.identity_service import get_actor_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Requests"])


def _filter_params(
    status: Annotated[
        Literal["pending", "approved", "rejected"] | None,
        Query(description="Request status."),
    ] = None,
    requester_kind: Annotated[TierKind | None, Query()] = None,
    requester_id: Annotated[str | None, Query(max_length=64)] = None,
    target_kind: Annotated[RequestTargetKind | None, Query()] = None,
    target_id: Annotated[str | None, Query(max_length=64)] = None,
    fiscal_year: Annotated[int | None, Query(ge=2000, le=2100)] = None,
) -> RequestFilterParams:
    return RequestFilterParams(
        status=status,
        requester_kind=requester_kind,
        requester_id=requester_id,
        target_kind=target_kind,
        target_id=target_id,
        fiscal_year=fiscal_year,
    )


def _pagination_params(
    page: Annotated[int, Query(description="Page number (1-based).", ge=1)] = 1,
    page_size: Annotated[int, Query(description="Rows per page (max 200).", ge=1, le=200)] = 20,
) -> PaginationParams:
    return PaginationParams(page=page, page_size=page_size)


@router.get(
    "",
    response_model=BudgetRequestListResponse,
    summary="List budget requests",
    description="Newest first. Approvers filter on target and ``status=pending``.",
)
def list_requests(
    filters: Annotated[RequestFilterParams, Depends(_filter_params)],
    pagination: Annotated[PaginationParams, Depends(_pagination_params)],
    db: Annotated[Session, Depends(get_db)],
) -> BudgetRequestListResponse:
    logger.debug("GET /requests %s", filters.model_dump(exclude_none=True))
    return request_service.list_requests(db, filters, pagination)


@router.post(
    "",
    response_model=BudgetRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit a budget request",
    description=(
        "Creates a pending request. No balance changes until an approver "
        "decides it. Regions request from the national pool (``target_kind=national``)."
    ),
    responses={
        401: {"description": "Missing X-Actor-Id header."},
        422: {"model": ErrorResponse, "description": "Invalid amount, hierarchy or membership."},
    },
)
def submit_request(
    body: BudgetRequestCreate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> BudgetRequestResponse:
    """Create a pending request.

    Args:
        body: Requester, target, fiscal year, amount and reason.
        db: Database session.
        actor_id: Caller identity, stored as ``created_by``.
    """
    logger.debug(
        "POST /requests %s:%s -> %s:%s by %s",
        body.requester_kind, body.requester_id, body.target_kind, body.target_id, actor_id,
    )
    return request_service.submit_request(
        db,
        TierRef(kind=body.requester_kind, id=body.requester_id),
        body.target_kind,
        body.target_id,
        body.fiscal_year,
        body.amount,
        reason=body.reason,
        actor_id=actor_id,
    )


@router.get(
    "/{request_id}",
    response_model=BudgetRequestResponse,
    summary="Get a budget request",
    responses={404: {"model": ErrorResponse, "description": "Request not found."}},
)
def get_request(
    request_id: Annotated[int, Path(description="Request id.", ge=1)],
    db: Annotated[Session, Depends(get_db)],
) -> BudgetRequestResponse:
    logger.debug("GET /requests/%d", request_id)
    return request_service.get_request(db, request_id)


@router.post(
    "/{request_id}/decision",
    response_model=DecisionResult,
    summary="Approve or reject a budget request",
    description=(
        "Approval transfers the requested amount from the target tier to the "
        "requester atomically with the status change.  If the target lacks "
        "funds the request stays pending and a 409 with the shortfall is "
        "returned.  Deciding an already decided request is a no-op that "
        "returns ``already_decided: true``."
    ),
    responses={
        401: {"description": "Missing X-Actor-Id header."},
        404: {"model": ErrorResponse, "description": "Request or target budget not found."},
        409: {"model": ErrorResponse, "description": "Target tier lacks funds."},
        503: {"model": ErrorResponse, "description": "Concurrent writers kept winning."},
    },
)
def decide_request(
    request_id: Annotated[int, Path(description="Request id.", ge=1)],
    body: DecisionCreate,
    db: Annotated[Session, Depends(get_db)],
    actor_id: Annotated[str, Depends(get_actor_id)],
) -> DecisionResult:
    """Decide a pending request.

    Args:
        request_id: Request to decide.
        body: ``approved`` or ``rejected`` plus optional notes.
        db: Database session.
        actor_id: Decider identity, stored as ``decided_by``.
    """
    logger.debug("POST /requests/%d/decision %s by %s", request_id, body.decision, actor_id)
    return request_service.decide_request(
        db, request_id, body.decision, decider_id=actor_id, notes=body.notes
    )
