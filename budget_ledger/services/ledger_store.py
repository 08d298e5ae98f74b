"""
Ledger Store — durable balance rows and the append-only transaction log.

This module holds no business rules.  It exposes the three primitives every
other component builds on:

- ``get_balance`` — read one ``TierBudget`` (with its version).
- ``compare_and_adjust`` — the single balance mutation path: one conditional
  ``UPDATE`` that writes the new balances only if the version still matches
  and the result stays inside ``[0, total_allocation]``.
- ``append_transaction`` — idempotent insert keyed by
  ``(idempotency_key, leg)``.

Design notes
------------
- Functions never commit.  The caller (allocation / request / expense
  services) owns the unit of work and commits or rolls back once, so the
  two legs of an allocation become visible together or not at all.
- ``compare_and_adjust`` computes the new balances as ``Decimal`` from the
  row it reads and checks the bounds before writing.  The ``WHERE`` clause
  pins ``version``, so the values it read are the values it replaces; a
  concurrent writer that commits first makes the update match zero rows.
  No balance arithmetic runs in SQL: SQLite evaluates ``Numeric`` in binary
  floating point.
- Timestamps are naive UTC set in Python so both legs of one allocation
  carry the identical ``occurred_at``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from budget_ledger.errors import (
    BalanceBoundsError,
    InsufficientFundsError,
    MembershipInvalidError,
    NotFoundError,
    VersionConflictError,
)
from budget_ledger.models.ledger_transaction import LedgerTransaction
from budget_ledger.models.tier_budget import TierBudget
from budget_ledger.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the ``DateTime`` columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _label(tier_kind: str, tier_id: str) -> str:
    return f"{tier_kind}:{tier_id}"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def find_balance(
    db: Session, tier_kind: str, tier_id: str, fiscal_year: int
) -> TierBudget | None:
    """Return the ``TierBudget`` row or ``None`` when it does not exist yet.

    ``populate_existing`` discards any stale identity-map copy so callers
    always see the committed version.
    """
    return (
        db.query(TierBudget)
        .populate_existing()
        .filter(
            TierBudget.tier_kind == tier_kind,
            TierBudget.tier_id == tier_id,
            TierBudget.fiscal_year == fiscal_year,
        )
        .first()
    )


def get_balance(db: Session, tier_kind: str, tier_id: str, fiscal_year: int) -> TierBudget:
    """Return the ``TierBudget`` row for a tier and fiscal year.

    Raises:
        NotFoundError: If the tier has no budget for that year.
    """
    budget = find_balance(db, tier_kind, tier_id, fiscal_year)
    if budget is None:
        raise NotFoundError(
            f"No {fiscal_year} budget exists for {_label(tier_kind, tier_id)}."
        )
    return budget


def list_child_balances(
    db: Session, parent_kind: str, parent_id: str, fiscal_year: int
) -> list[TierBudget]:
    """Return every budget funded by the given parent tier, largest first."""
    return (
        db.query(TierBudget)
        .filter(
            TierBudget.parent_kind == parent_kind,
            TierBudget.parent_id == parent_id,
            TierBudget.fiscal_year == fiscal_year,
        )
        .order_by(TierBudget.total_allocation.desc(), TierBudget.tier_id)
        .all()
    )


# ---------------------------------------------------------------------------
# Lazy creation
# ---------------------------------------------------------------------------


def ensure_balance(
    db: Session,
    tier_kind: str,
    tier_id: str,
    fiscal_year: int,
    parent_kind: str | None = None,
    parent_id: str | None = None,
) -> TierBudget:
    """Return the tier's budget row, creating it with zero balances if absent.

    A child row is scoped to exactly one parent: the first allocation fixes
    ``parent_kind``/``parent_id`` and any later call naming another parent
    fails.  If a concurrent creator wins the unique constraint the flush
    raises ``IntegrityError``; the allocation unit of work treats that as a
    conflict and retries against the winner's row.

    Raises:
        MembershipInvalidError: If the row exists under a different parent.
    """
    budget = find_balance(db, tier_kind, tier_id, fiscal_year)

    if budget is None:
        budget = TierBudget(
            tier_kind=tier_kind,
            tier_id=tier_id,
            fiscal_year=fiscal_year,
            parent_kind=parent_kind,
            parent_id=parent_id,
            total_allocation=ZERO,
            remaining_balance=ZERO,
            version=0,
            created_at=utcnow(),
            updated_at=utcnow(),
        )
        db.add(budget)
        db.flush()
        logger.info(
            "ensure_balance: created %s fy=%d parent=%s",
            _label(tier_kind, tier_id), fiscal_year,
            _label(parent_kind, parent_id) if parent_kind else None,
        )
        return budget

    if parent_kind is not None and (
        budget.parent_kind != parent_kind or budget.parent_id != parent_id
    ):
        raise MembershipInvalidError(
            _label(tier_kind, tier_id), _label(parent_kind, parent_id)
        )

    return budget


# ---------------------------------------------------------------------------
# The only balance mutation path
# ---------------------------------------------------------------------------


def compare_and_adjust(
    db: Session,
    tier_kind: str,
    tier_id: str,
    fiscal_year: int,
    expected_version: int,
    delta_total: Decimal = ZERO,
    delta_remaining: Decimal = ZERO,
) -> TierBudget:
    """Atomically apply signed deltas to one tier balance.

    The update succeeds only if the row's version equals
    ``expected_version`` and the resulting balance satisfies
    ``0 <= remaining_balance <= total_allocation``.  On success ``version``
    grows by exactly one.

    Args:
        db: Active SQLAlchemy session (not committed here).
        tier_kind: Tier kind.
        tier_id: Tier identifier.
        fiscal_year: Budget year.
        expected_version: Version observed by the caller's read.
        delta_total: Signed change to ``total_allocation``.
        delta_remaining: Signed change to ``remaining_balance``.

    Returns:
        The refreshed ``TierBudget`` row.

    Raises:
        NotFoundError: If the row does not exist.
        VersionConflictError: If another writer changed the row first.
        InsufficientFundsError: If remaining balance would drop below zero.
        BalanceBoundsError: If remaining balance would exceed total allocation.
    """
    current = get_balance(db, tier_kind, tier_id, fiscal_year)
    if current.version != expected_version:
        raise VersionConflictError(current.label, expected_version, current.version)

    # The version pins these values; the arithmetic stays in Decimal.
    new_total = to_money(current.total_allocation) + to_money(delta_total)
    new_remaining = to_money(current.remaining_balance) + to_money(delta_remaining)

    if new_remaining < ZERO:
        raise InsufficientFundsError(
            current.label, to_money(current.remaining_balance), abs(to_money(delta_remaining))
        )
    if new_remaining > new_total:
        raise BalanceBoundsError(current.label, new_remaining, new_total)

    updated = (
        db.query(TierBudget)
        .filter(
            TierBudget.tier_kind == tier_kind,
            TierBudget.tier_id == tier_id,
            TierBudget.fiscal_year == fiscal_year,
            TierBudget.version == expected_version,
        )
        .update(
            {
                TierBudget.total_allocation: new_total,
                TierBudget.remaining_balance: new_remaining,
                TierBudget.version: expected_version + 1,
                TierBudget.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )

    current = get_balance(db, tier_kind, tier_id, fiscal_year)

    if updated != 1:
        raise VersionConflictError(current.label, expected_version, current.version)

    logger.debug(
        "compare_and_adjust: %s fy=%d v%d->v%d total%+s remaining%+s",
        current.label, fiscal_year, expected_version, current.version,
        delta_total, delta_remaining,
    )
    return current


# ---------------------------------------------------------------------------
# Append-only transaction log
# ---------------------------------------------------------------------------


def find_transactions_by_key(db: Session, idempotency_key: str) -> dict[str, LedgerTransaction]:
    """Return the transactions recorded under a key, indexed by leg."""
    rows = (
        db.query(LedgerTransaction)
        .filter(LedgerTransaction.idempotency_key == idempotency_key)
        .all()
    )
    return {row.leg: row for row in rows}


def append_transaction(db: Session, record: dict[str, Any]) -> int:
    """Insert a transaction unless one already exists for its key and leg.

    Args:
        db: Active SQLAlchemy session (flushed, not committed).
        record: Column values for ``LedgerTransaction``; must include
            ``idempotency_key`` and ``leg``.

    Returns:
        The id of the new row, or of the existing row on replay.
    """
    existing = (
        db.query(LedgerTransaction.id)
        .filter(
            LedgerTransaction.idempotency_key == record["idempotency_key"],
            LedgerTransaction.leg == record["leg"],
        )
        .scalar()
    )
    if existing is not None:
        logger.info(
            "append_transaction: replay of key=%s leg=%s -> id=%d",
            record["idempotency_key"], record["leg"], existing,
        )
        return existing

    values = dict(record)
    values.setdefault("occurred_at", utcnow())
    transaction = LedgerTransaction(**values)
    db.add(transaction)
    db.flush()
    return transaction.id
