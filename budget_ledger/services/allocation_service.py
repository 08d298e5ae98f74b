"""
Allocation Engine — moves funds down the tier hierarchy.

All database access for ``/api/allocations`` and region funding lives here,
together with ``run_atomic``, the unit-of-work runner shared by every
balance-changing service (allocations, request approvals, expenses).

Design notes
------------
- One entry point per movement.  ``allocate`` debits the parent's
  remaining balance and credits the child's total and remaining balance;
  ``fund_tier`` tops up a region from the national pool.  There is no
  second "fallback" path: both legs and both transaction rows are written
  in one database transaction and committed once.
- Any failure between the first write and the commit rolls the whole
  unit back, so a debit without its matching credit is never visible.
- ``VersionConflictError`` (and a unique-constraint race on the lazily
  created child row or on the idempotency key) is retried with a fresh
  read, at most ``LEDGER_MAX_ATTEMPTS`` times with jittered exponential
  backoff, then surfaced as ``LedgerBusyError`` carrying the available
  balance.  The whole call is bounded by
  ``LEDGER_OPERATION_TIMEOUT_SECONDS``.
- Every movement is keyed.  If the key already recorded the movement the
  original result is returned with ``replayed=True`` and nothing changes.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from budget_ledger.config import get_settings
from budget_ledger.errors import (
    IdempotencyKeyReusedError,
    InsufficientFundsError,
    InvalidHierarchyError,
    LedgerBusyError,
    LedgerError,
    LedgerTimeoutError,
    MembershipInvalidError,
    VersionConflictError,
)
from budget_ledger.models.ledger_transaction import LedgerTransaction
from budget_ledger.models.tier_budget import TierBudget
from budget_ledger.schemas.common import TierRef, check_client_key
from budget_ledger.schemas.ledger import AllocationResult, FundingResult
from budget_ledger.services import ledger_store, membership_service
from budget_ledger.services.balance_service import build_balance_response
from budget_ledger.utils.constants import (
    LEG_CREDIT,
    LEG_DEBIT,
    LEG_SINGLE,
    NATIONAL_POOL_ID,
    PARENT_KIND,
    TIER_NATIONAL,
    TIER_REGION,
    TX_ALLOCATION,
    TX_COMPLETED,
)
from budget_ledger.utils.money import parse_amount, to_money

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


def _apply_statement_timeout(db: Session, seconds_left: float) -> None:
    """Bound every statement of the attempt on PostgreSQL (no-op elsewhere)."""
    if db.get_bind().dialect.name != "postgresql":
        return
    millis = max(int(seconds_left * 1000), 1)
    db.execute(text(f"SET LOCAL statement_timeout = {millis}"))


def _backoff(attempt: int, base_delay: float, deadline: float) -> None:
    delay = base_delay * (2 ** (attempt - 1)) * random.uniform(0.5, 1.5)
    delay = min(delay, max(deadline - time.monotonic(), 0.0))
    if delay > 0:
        time.sleep(delay)


def run_atomic(
    db: Session,
    operation: str,
    work: Callable[[int], T],
    probe: Callable[[], TierBudget | None] | None = None,
) -> T:
    """Run ``work`` as one committed unit, retrying on optimistic conflicts.

    Args:
        db: Active SQLAlchemy session.
        operation: Name used in logs and timeout errors.
        work: Callable receiving the 1-based attempt number.  It performs
            all reads and writes of one attempt without committing.
        probe: Returns the contended balance row, used to report the
            available balance when the retry budget is exhausted.

    Returns:
        Whatever ``work`` returned on the committed attempt.

    Raises:
        LedgerBusyError: If every attempt hit a conflict.
        LedgerTimeoutError: If the time bound elapsed; nothing was applied.
        LedgerError: Any business error raised by ``work`` (after rollback).
    """
    settings = get_settings()
    timeout = settings.LEDGER_OPERATION_TIMEOUT_SECONDS
    max_attempts = max(settings.LEDGER_MAX_ATTEMPTS, 1)
    deadline = time.monotonic() + timeout
    conflict_tier = operation

    for attempt in range(1, max_attempts + 1):
        if time.monotonic() >= deadline:
            raise LedgerTimeoutError(operation, timeout)

        try:
            _apply_statement_timeout(db, deadline - time.monotonic())
            result = work(attempt)
            if time.monotonic() >= deadline:
                db.rollback()
                raise LedgerTimeoutError(operation, timeout)
            db.commit()
            return result
        except VersionConflictError as exc:
            db.rollback()
            conflict_tier = exc.tier
            logger.warning(
                "%s: attempt %d/%d conflicted on %s (expected v%d, found v%d)",
                operation, attempt, max_attempts, exc.tier,
                exc.expected_version, exc.actual_version,
            )
        except IntegrityError as exc:
            db.rollback()
            logger.warning(
                "%s: attempt %d/%d lost a uniqueness race: %s",
                operation, attempt, max_attempts, exc.orig,
            )
        except OperationalError as exc:
            db.rollback()
            if "statement timeout" in str(exc.orig).lower():
                raise LedgerTimeoutError(operation, timeout) from exc
            raise
        except LedgerError:
            db.rollback()
            raise
        except Exception:
            db.rollback()
            logger.exception("%s: attempt %d failed unexpectedly, rolled back", operation, attempt)
            raise

        if attempt < max_attempts:
            _backoff(attempt, settings.LEDGER_RETRY_BASE_DELAY_SECONDS, deadline)

    available = None
    if probe is not None:
        budget = probe()
        if budget is not None:
            available = to_money(budget.remaining_balance)
            conflict_tier = budget.label
        db.rollback()
    logger.warning("%s: giving up after %d attempts on %s", operation, max_attempts, conflict_tier)
    raise LedgerBusyError(conflict_tier, max_attempts, available)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def new_idempotency_key(prefix: str) -> str:
    return f"{prefix}:{uuid4().hex}"


def check_hierarchy(parent_kind: str, child: TierRef) -> None:
    """Raise unless ``parent_kind`` is exactly one level above ``child``."""
    expected = PARENT_KIND.get(child.kind)
    if expected != parent_kind:
        raise InvalidHierarchyError(
            f"A {child.kind} is funded by a {expected}, not by a {parent_kind}."
        )


def _replayed_allocation(
    db: Session,
    legs: dict[str, LedgerTransaction],
    idempotency_key: str,
    parent: TierRef,
    child: TierRef,
    fiscal_year: int,
    amount: Decimal,
) -> AllocationResult:
    debit = legs.get(LEG_DEBIT)
    credit = legs.get(LEG_CREDIT)
    if (
        debit is None
        or credit is None
        or (debit.tier_kind, debit.tier_id) != (parent.kind, parent.id)
        or (credit.tier_kind, credit.tier_id) != (child.kind, child.id)
        or debit.fiscal_year != fiscal_year
        or to_money(credit.amount) != amount
    ):
        raise IdempotencyKeyReusedError(idempotency_key)

    logger.info("allocate: key=%s already applied, replaying", idempotency_key)
    return AllocationResult(
        idempotency_key=idempotency_key,
        amount=amount,
        parent=build_balance_response(
            ledger_store.get_balance(db, parent.kind, parent.id, fiscal_year)
        ),
        child=build_balance_response(
            ledger_store.get_balance(db, child.kind, child.id, fiscal_year)
        ),
        debit_transaction_id=debit.id,
        credit_transaction_id=credit.id,
        replayed=True,
    )


# ---------------------------------------------------------------------------
# Allocation (parent -> child)
# ---------------------------------------------------------------------------


def apply_allocation(
    db: Session,
    parent: TierRef,
    child: TierRef,
    fiscal_year: int,
    amount: Decimal,
    idempotency_key: str,
    description: str | None = None,
    actor_id: str | None = None,
    transaction_type: str = TX_ALLOCATION,
    request_id: int | None = None,
    attempt: int = 1,
) -> AllocationResult:
    """Perform one allocation attempt inside the caller's unit of work.

    Does not commit.  Used directly by ``allocate`` and by the request
    workflow, which adds its own status change to the same unit.

    Raises:
        InvalidHierarchyError: If ``parent`` is not one level above ``child``.
        MembershipInvalidError: If the child is not an active member of the
            parent, or its budget is already scoped under another parent.
        NotFoundError: If the parent has no budget for the year.
        InsufficientFundsError: If the parent's remaining balance is too low.
        VersionConflictError: If either row changed concurrently.
    """
    legs = ledger_store.find_transactions_by_key(db, idempotency_key)
    if legs:
        result = _replayed_allocation(
            db, legs, idempotency_key, parent, child, fiscal_year, amount
        )
        result.attempts = attempt
        return result

    check_hierarchy(parent.kind, child)
    if not membership_service.is_active_member(db, child, parent):
        raise MembershipInvalidError(child.label, parent.label)

    parent_budget = ledger_store.get_balance(db, parent.kind, parent.id, fiscal_year)
    available = to_money(parent_budget.remaining_balance)
    if available < amount:
        raise InsufficientFundsError(parent_budget.label, available, amount)

    child_budget = ledger_store.ensure_balance(
        db, child.kind, child.id, fiscal_year, parent.kind, parent.id
    )

    parent_after = ledger_store.compare_and_adjust(
        db, parent.kind, parent.id, fiscal_year,
        expected_version=parent_budget.version,
        delta_remaining=-amount,
    )
    child_after = ledger_store.compare_and_adjust(
        db, child.kind, child.id, fiscal_year,
        expected_version=child_budget.version,
        delta_total=amount,
        delta_remaining=amount,
    )

    occurred_at = ledger_store.utcnow()
    shared: dict[str, Any] = {
        "fiscal_year": fiscal_year,
        "transaction_type": transaction_type,
        "description": description,
        "status": TX_COMPLETED,
        "idempotency_key": idempotency_key,
        "request_id": request_id,
        "actor_id": actor_id,
        "occurred_at": occurred_at,
    }
    debit_id = ledger_store.append_transaction(db, {
        **shared,
        "tier_kind": parent.kind,
        "tier_id": parent.id,
        "counterpart_kind": child.kind,
        "counterpart_id": child.id,
        "amount": -amount,
        "leg": LEG_DEBIT,
    })
    credit_id = ledger_store.append_transaction(db, {
        **shared,
        "tier_kind": child.kind,
        "tier_id": child.id,
        "counterpart_kind": parent.kind,
        "counterpart_id": parent.id,
        "amount": amount,
        "leg": LEG_CREDIT,
    })

    logger.info(
        "allocate: %s -> %s fy=%d amount=%s key=%s attempt=%d",
        parent.label, child.label, fiscal_year, amount, idempotency_key, attempt,
    )
    return AllocationResult(
        idempotency_key=idempotency_key,
        amount=amount,
        parent=build_balance_response(parent_after),
        child=build_balance_response(child_after),
        debit_transaction_id=debit_id,
        credit_transaction_id=credit_id,
        attempts=attempt,
    )


def allocate(
    db: Session,
    parent: TierRef,
    child: TierRef,
    fiscal_year: int,
    amount: Any,
    description: str | None = None,
    actor_id: str | None = None,
    idempotency_key: str | None = None,
) -> AllocationResult:
    """Move ``amount`` from the parent's remaining balance into the child.

    The child's budget row is created with zero balances on first use.
    Either both legs are applied and committed, or neither is.

    Args:
        db: Active SQLAlchemy session.
        parent: Funding tier.
        child: Receiving tier, exactly one level below ``parent``.
        fiscal_year: Budget year of both balances.
        amount: Positive amount (parsed with ``parse_amount``).
        description: Note stored on both transaction legs.
        actor_id: Opaque identity of the administrator.
        idempotency_key: Retry token; generated when omitted.

    Returns:
        ``AllocationResult`` with both balances after the move.

    Raises:
        InvalidAmountError: If ``amount`` is not a positive decimal.
        InvalidIdempotencyKeyError: If ``idempotency_key`` uses a reserved prefix.
        InsufficientFundsError: If the parent's remaining balance is too low.
        LedgerBusyError: If concurrent writers kept winning.
        LedgerTimeoutError: If the time bound elapsed.
        NotFoundError / MembershipInvalidError / InvalidHierarchyError.
    """
    amount = parse_amount(amount)
    key = check_client_key(idempotency_key) or new_idempotency_key("alloc")

    return run_atomic(
        db,
        "allocate",
        lambda attempt: apply_allocation(
            db, parent, child, fiscal_year, amount, key,
            description=description,
            actor_id=actor_id,
            attempt=attempt,
        ),
        probe=lambda: ledger_store.find_balance(db, parent.kind, parent.id, fiscal_year),
    )


# ---------------------------------------------------------------------------
# Funding (national pool -> region)
# ---------------------------------------------------------------------------


def apply_funding(
    db: Session,
    region: TierRef,
    fiscal_year: int,
    amount: Decimal,
    idempotency_key: str,
    description: str | None = None,
    actor_id: str | None = None,
    transaction_type: str = TX_ALLOCATION,
    request_id: int | None = None,
    attempt: int = 1,
) -> FundingResult:
    """Perform one region top-up attempt inside the caller's unit of work."""
    if region.kind != TIER_REGION:
        raise InvalidHierarchyError(
            f"Only regions are funded from the national pool, not a {region.kind}."
        )

    legs = ledger_store.find_transactions_by_key(db, idempotency_key)
    if legs:
        single = legs.get(LEG_SINGLE)
        if (
            single is None
            or (single.tier_kind, single.tier_id) != (region.kind, region.id)
            or to_money(single.amount) != amount
        ):
            raise IdempotencyKeyReusedError(idempotency_key)
        logger.info("fund_tier: key=%s already applied, replaying", idempotency_key)
        return FundingResult(
            idempotency_key=idempotency_key,
            amount=amount,
            tier=build_balance_response(
                ledger_store.get_balance(db, region.kind, region.id, fiscal_year)
            ),
            transaction_id=single.id,
            attempts=attempt,
            replayed=True,
        )

    budget = ledger_store.ensure_balance(db, region.kind, region.id, fiscal_year)
    budget_after = ledger_store.compare_and_adjust(
        db, region.kind, region.id, fiscal_year,
        expected_version=budget.version,
        delta_total=amount,
        delta_remaining=amount,
    )
    transaction_id = ledger_store.append_transaction(db, {
        "tier_kind": region.kind,
        "tier_id": region.id,
        "fiscal_year": fiscal_year,
        "counterpart_kind": TIER_NATIONAL,
        "counterpart_id": NATIONAL_POOL_ID,
        "transaction_type": transaction_type,
        "amount": amount,
        "description": description,
        "status": TX_COMPLETED,
        "idempotency_key": idempotency_key,
        "leg": LEG_SINGLE,
        "request_id": request_id,
        "actor_id": actor_id,
    })

    logger.info(
        "fund_tier: %s fy=%d amount=%s key=%s", region.label, fiscal_year, amount, idempotency_key
    )
    return FundingResult(
        idempotency_key=idempotency_key,
        amount=amount,
        tier=build_balance_response(budget_after),
        transaction_id=transaction_id,
        attempts=attempt,
    )


def fund_tier(
    db: Session,
    region: TierRef,
    fiscal_year: int,
    amount: Any,
    description: str | None = None,
    actor_id: str | None = None,
    idempotency_key: str | None = None,
) -> FundingResult:
    """Top up a region budget from the national pool (superadmin action).

    Raises:
        InvalidAmountError: If ``amount`` is not a positive decimal.
        InvalidIdempotencyKeyError: If ``idempotency_key`` uses a reserved prefix.
        InvalidHierarchyError: If ``region`` is not a region.
        LedgerBusyError / LedgerTimeoutError.
    """
    amount = parse_amount(amount)
    key = check_client_key(idempotency_key) or new_idempotency_key("fund")

    return run_atomic(
        db,
        "fund_tier",
        lambda attempt: apply_funding(
            db, region, fiscal_year, amount, key,
            description=description,
            actor_id=actor_id,
            attempt=attempt,
        ),
        probe=lambda: ledger_store.find_balance(db, region.kind, region.id, fiscal_year),
    )
