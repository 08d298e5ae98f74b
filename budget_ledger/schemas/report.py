"""
Pydantic v2 schemas for tier reports (``/api/reports``).
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from budget_ledger.schemas.ledger import TierBudgetResponse


class CategorySpendItem(BaseModel):
    """Completed spending for one expense category."""

    category: str
    amount: Decimal
    count: int = Field(..., ge=0)


class MonthlyFlowItem(BaseModel):
    """Completed inflow and outflow for one month of the fiscal year."""

    month: int = Field(..., ge=1, le=12)
    label: str
    inflow: Decimal
    outflow: Decimal


class TierSummaryResponse(BaseModel):
    """Financial report for one tier and fiscal year.

    Attributes:
        balance: Balance card.
        spending_by_category: Completed expenses net of refunds, per category.
        monthly_trend: Twelve rows, one per calendar month.
        children: Budgets allocated from this tier.
        requests_by_status: Count of requests made by this tier, per status.
    """

    balance: TierBudgetResponse
    spending_by_category: list[CategorySpendItem]
    monthly_trend: list[MonthlyFlowItem]
    children: list[TierBudgetResponse]
    requests_by_status: dict[str, int]
