"""
Request Workflow — funding asks from a tier to the tier one level up.

Valid pairs are farmer → organization, organization → region and
region → national.  ``decide_request`` is the only function that moves a
request out of ``pending``; approval runs the Allocation Engine inside the
same unit of work, so a request is never marked approved while its
transfer failed.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidHierarchyError,
    LedgerError,
    MembershipInvalidError,
    NotFoundError,
)
from budget_ledger.models.budget_request import BudgetRequest
from budget_ledger.schemas.budget_request import (
    BudgetRequestListResponse,
    BudgetRequestResponse,
    DecisionResult,
    RequestFilterParams,
)
from budget_ledger.schemas.common import PaginationParams, TierRef
from budget_ledger.services import ledger_store, membership_service
from budget_ledger.services.allocation_service import (
    apply_allocation,
    apply_funding,
    run_atomic,
)
from budget_ledger.utils.constants import (
    LEG_SINGLE,
    NATIONAL_POOL_ID,
    PARENT_KIND,
    REQUEST_APPROVED,
    REQUEST_KEY_PREFIX,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    TIER_NATIONAL,
    TX_REJECTED,
    TX_REQUEST_SETTLEMENT,
)
from budget_ledger.utils.money import parse_amount

logger = logging.getLogger(__name__)


class _DecisionLost(LedgerError):
    """Another decider moved the request out of ``pending`` first."""

    def __init__(self, request_id: int) -> None:
        super().__init__(f"Budget request {request_id} is already decided.", code="ALREADY_DECIDED")


def settlement_key(request_id: int) -> str:
    return f"{REQUEST_KEY_PREFIX}{request_id}"


def _load(db: Session, request_id: int) -> BudgetRequest:
    request = (
        db.query(BudgetRequest)
        .populate_existing()
        .filter(BudgetRequest.id == request_id)
        .first()
    )
    if request is None:
        raise NotFoundError(f"Budget request {request_id} does not exist.")
    return request


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------


def submit_request(
    db: Session,
    requester: TierRef,
    target_kind: str,
    target_id: str | None,
    fiscal_year: int,
    amount: Any,
    reason: str | None = None,
    actor_id: str | None = None,
) -> BudgetRequestResponse:
    """Create a ``pending`` request; no balance is touched.

    Args:
        db: Active SQLAlchemy session.
        requester: Tier asking for funds.
        target_kind: Kind of the funding tier, one level above the requester.
        target_id: Funding tier id; ignored when ``target_kind`` is national.
        fiscal_year: Budget year of the request.
        amount: Positive amount.
        reason: Purpose of the request.
        actor_id: Opaque identity of the submitting user.

    Raises:
        InvalidAmountError: If ``amount`` is not a positive decimal.
        InvalidHierarchyError: If the target is not one level above.
        MembershipInvalidError: If the requester is not an active member of
            the target tier.
    """
    amount = parse_amount(amount)

    expected = PARENT_KIND.get(requester.kind)
    if target_kind != expected:
        raise InvalidHierarchyError(
            f"A {requester.kind} requests funds from a {expected}, not from a {target_kind}."
        )

    if target_kind == TIER_NATIONAL:
        target_id = NATIONAL_POOL_ID
    else:
        if not target_id:
            raise InvalidHierarchyError(f"target_id is required for a {target_kind} target.")
        target = TierRef(kind=target_kind, id=target_id)
        if not membership_service.is_active_member(db, requester, target):
            raise MembershipInvalidError(requester.label, target.label)

    request = BudgetRequest(
        requester_kind=requester.kind,
        requester_id=requester.id,
        target_kind=target_kind,
        target_id=target_id,
        fiscal_year=fiscal_year,
        amount=amount,
        reason=reason,
        status=REQUEST_PENDING,
        created_by=actor_id,
        created_at=ledger_store.utcnow(),
    )
    db.add(request)
    db.commit()
    db.refresh(request)

    logger.info(
        "submit_request: id=%d %s -> %s:%s fy=%d amount=%s",
        request.id, requester.label, target_kind, target_id, fiscal_year, amount,
    )
    return BudgetRequestResponse.model_validate(request)


# ---------------------------------------------------------------------------
# Decide
# ---------------------------------------------------------------------------


def _already_decided(db: Session, request_id: int) -> DecisionResult:
    request = _load(db, request_id)
    logger.info(
        "decide_request: id=%d already %s, nothing to do", request_id, request.status
    )
    return DecisionResult(
        request=BudgetRequestResponse.model_validate(request),
        already_decided=True,
    )


def _apply_decision(
    db: Session,
    request_id: int,
    decision: str,
    decider_id: str | None,
    notes: str | None,
    attempt: int,
) -> DecisionResult:
    request = _load(db, request_id)
    if request.status != REQUEST_PENDING:
        raise _DecisionLost(request_id)

    # Claim the request first; a concurrent decider blocks or matches zero rows.
    claimed = (
        db.query(BudgetRequest)
        .filter(BudgetRequest.id == request_id, BudgetRequest.status == REQUEST_PENDING)
        .update(
            {
                BudgetRequest.status: decision,
                BudgetRequest.decided_at: ledger_store.utcnow(),
                BudgetRequest.decided_by: decider_id,
                BudgetRequest.decision_notes: notes,
            },
            synchronize_session=False,
        )
    )
    if claimed != 1:
        raise _DecisionLost(request_id)

    key = settlement_key(request_id)
    amount = parse_amount(request.amount)
    requester = TierRef(kind=request.requester_kind, id=request.requester_id)
    result = DecisionResult(request=BudgetRequestResponse.model_validate(request))

    if decision == REQUEST_APPROVED:
        if request.target_kind == TIER_NATIONAL:
            result.funding = apply_funding(
                db, requester, request.fiscal_year, amount, key,
                description=request.reason,
                actor_id=decider_id,
                transaction_type=TX_REQUEST_SETTLEMENT,
                request_id=request_id,
                attempt=attempt,
            )
        else:
            result.allocation = apply_allocation(
                db,
                TierRef(kind=request.target_kind, id=request.target_id),
                requester,
                request.fiscal_year,
                amount,
                key,
                description=request.reason,
                actor_id=decider_id,
                transaction_type=TX_REQUEST_SETTLEMENT,
                request_id=request_id,
                attempt=attempt,
            )
    else:
        result.settlement_transaction_id = ledger_store.append_transaction(db, {
            "tier_kind": request.requester_kind,
            "tier_id": request.requester_id,
            "fiscal_year": request.fiscal_year,
            "counterpart_kind": request.target_kind,
            "counterpart_id": request.target_id,
            "transaction_type": TX_REQUEST_SETTLEMENT,
            "amount": amount,
            "description": notes or request.reason,
            "status": TX_REJECTED,
            "idempotency_key": key,
            "leg": LEG_SINGLE,
            "request_id": request_id,
            "actor_id": decider_id,
        })

    result.request = BudgetRequestResponse.model_validate(_load(db, request_id))
    return result


def decide_request(
    db: Session,
    request_id: int,
    decision: str,
    decider_id: str | None = None,
    notes: str | None = None,
) -> DecisionResult:
    """Approve or reject a pending request.

    Approval moves ``amount`` from the target tier into the requester in
    the same database transaction as the status change.  Rejection only
    changes the status and appends one ``request_settlement`` row with
    status ``rejected``.  A request that is no longer pending is returned
    unchanged with ``already_decided=True``.

    Args:
        db: Active SQLAlchemy session.
        request_id: Request to decide.
        decision: ``"approved"`` or ``"rejected"``.
        decider_id: Opaque identity of the approver.
        notes: Decision notes, written once.

    Raises:
        NotFoundError: If the request or the target budget does not exist.
        InsufficientFundsError: If the target lacks funds; the request
            stays ``pending``.
        MembershipInvalidError: If the requester left the target tier.
        LedgerBusyError / LedgerTimeoutError.
    """
    if decision not in (REQUEST_APPROVED, REQUEST_REJECTED):
        raise ValueError(f"Unknown decision {decision!r}")

    request = _load(db, request_id)
    if request.status != REQUEST_PENDING:
        return _already_decided(db, request_id)

    target_kind, target_id, fiscal_year = request.target_kind, request.target_id, request.fiscal_year
    probe_kind, probe_id = (
        (request.requester_kind, request.requester_id)
        if target_kind == TIER_NATIONAL
        else (target_kind, target_id)
    )

    try:
        result = run_atomic(
            db,
            "decide_request",
            lambda attempt: _apply_decision(db, request_id, decision, decider_id, notes, attempt),
            probe=lambda: ledger_store.find_balance(db, probe_kind, probe_id, fiscal_year),
        )
    except _DecisionLost:
        return _already_decided(db, request_id)
    except InsufficientFundsError as exc:
        logger.warning(
            "decide_request: id=%d not approved, %s short by %s (available %s)",
            request_id, exc.tier, exc.shortfall, exc.available,
        )
        raise

    logger.info("decide_request: id=%d -> %s by %s", request_id, decision, decider_id)
    return result


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_request(db: Session, request_id: int) -> BudgetRequestResponse:
    """Return one request.

    Raises:
        NotFoundError: If the request does not exist.
    """
    return BudgetRequestResponse.model_validate(_load(db, request_id))


def list_requests(
    db: Session,
    filters: RequestFilterParams,
    pagination: PaginationParams,
) -> BudgetRequestListResponse:
    """Return requests matching the filters, newest first."""
    query = db.query(BudgetRequest)

    if filters.status:
        query = query.filter(BudgetRequest.status == filters.status)
    if filters.requester_kind:
        query = query.filter(BudgetRequest.requester_kind == filters.requester_kind)
    if filters.requester_id:
        query = query.filter(BudgetRequest.requester_id == filters.requester_id)
    if filters.target_kind:
        query = query.filter(BudgetRequest.target_kind == filters.target_kind)
    if filters.target_id:
        query = query.filter(BudgetRequest.target_id == filters.target_id)
    if filters.fiscal_year:
        query = query.filter(BudgetRequest.fiscal_year == filters.fiscal_year)

    total = query.count()
    rows = (
        query.order_by(BudgetRequest.created_at.desc(), BudgetRequest.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )

    logger.debug(
        "list_requests: filters=%s page=%d total=%d",
        filters.model_dump(exclude_none=True), pagination.page, total,
    )
    return BudgetRequestListResponse(
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        items=[BudgetRequestResponse.model_validate(r) for r in rows],
    )
