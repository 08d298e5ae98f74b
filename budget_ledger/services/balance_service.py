"""
Read-side helpers for tier balances (``/api/balances``).

Builds ``TierBudgetResponse`` cards from ``TierBudget`` rows, deriving
``utilized_amount`` and the utilization percentage in Python after the
query so the SQL stays portable between PostgreSQL and SQLite (tests).
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from budget_ledger.models.tier_budget import TierBudget
from budget_ledger.schemas.common import TierRef
from budget_ledger.schemas.ledger import ChildBudgetsResponse, TierBudgetResponse
from budget_ledger.services import ledger_store
from budget_ledger.utils.money import ZERO, to_money, utilization_pct

logger = logging.getLogger(__name__)


def build_balance_response(budget: TierBudget) -> TierBudgetResponse:
    """Map a ``TierBudget`` row to its API card."""
    total = to_money(budget.total_allocation)
    remaining = to_money(budget.remaining_balance)
    utilized = total - remaining
    return TierBudgetResponse(
        tier_kind=budget.tier_kind,
        tier_id=budget.tier_id,
        fiscal_year=budget.fiscal_year,
        parent_kind=budget.parent_kind,
        parent_id=budget.parent_id,
        total_allocation=total,
        remaining_balance=remaining,
        utilized_amount=utilized,
        utilization_pct=utilization_pct(utilized, total),
        version=budget.version,
        updated_at=budget.updated_at,
    )


def empty_balance_response(tier: TierRef, fiscal_year: int) -> TierBudgetResponse:
    """Zero card for a tier that has not been funded yet."""
    return TierBudgetResponse(
        tier_kind=tier.kind,
        tier_id=tier.id,
        fiscal_year=fiscal_year,
        total_allocation=ZERO,
        remaining_balance=ZERO,
        utilized_amount=ZERO,
        utilization_pct=0.0,
        version=0,
    )


def get_tier_balance(db: Session, tier: TierRef, fiscal_year: int) -> TierBudgetResponse:
    """Return the balance card of one tier.

    Raises:
        NotFoundError: If the tier has no budget for the year.
    """
    budget = ledger_store.get_balance(db, tier.kind, tier.id, fiscal_year)
    return build_balance_response(budget)


def get_children(db: Session, parent: TierRef, fiscal_year: int) -> ChildBudgetsResponse:
    """Return the parent's card plus every child budget it funded.

    Raises:
        NotFoundError: If the parent has no budget for the year.
    """
    parent_budget = ledger_store.get_balance(db, parent.kind, parent.id, fiscal_year)
    children = ledger_store.list_child_balances(db, parent.kind, parent.id, fiscal_year)
    allocated = sum((to_money(c.total_allocation) for c in children), ZERO)

    logger.debug(
        "get_children: %s fy=%d children=%d allocated=%s",
        parent.label, fiscal_year, len(children), allocated,
    )
    return ChildBudgetsResponse(
        parent=build_balance_response(parent_budget),
        children=[build_balance_response(c) for c in children],
        allocated_to_children=allocated,
    )
