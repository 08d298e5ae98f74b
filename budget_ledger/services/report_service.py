"""
Reporting service — tier summary and Excel / PDF exports (``/api/reports``).

Aggregations run in Python over the tier's transactions for one fiscal
year so the SQL stays portable between PostgreSQL and SQLite.  Only
``completed`` rows count towards spending and monthly flows.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from budget_ledger.exporters.excel_exporter import ExcelExporter
from budget_ledger.exporters.pdf_exporter import PdfExporter
from budget_ledger.models.budget_request import BudgetRequest
from budget_ledger.models.ledger_transaction import LedgerTransaction
from budget_ledger.schemas.common import TierRef
from budget_ledger.schemas.report import (
    CategorySpendItem,
    MonthlyFlowItem,
    TierSummaryResponse,
)
from budget_ledger.services import ledger_store
from budget_ledger.services.balance_service import build_balance_response
from budget_ledger.utils.constants import (
    MONTH_LABELS,
    REQUEST_STATUSES,
    TX_COMPLETED,
    TX_EXPENSE,
    TX_REFUND,
)
from budget_ledger.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)

EXPORT_ROW_LIMIT = 5000
UNCATEGORIZED = "Uncategorized"

_EXPORT_HEADERS = [
    "Date", "Type", "Status", "Counterpart", "Category", "Description", "Amount",
]


def _year_transactions(
    db: Session, tier: TierRef, fiscal_year: int, limit: int | None = None
) -> list[LedgerTransaction]:
    query = (
        db.query(LedgerTransaction)
        .filter(
            LedgerTransaction.tier_kind == tier.kind,
            LedgerTransaction.tier_id == tier.id,
            LedgerTransaction.fiscal_year == fiscal_year,
        )
        .order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def _spending_by_category(rows: list[LedgerTransaction]) -> list[CategorySpendItem]:
    amounts: dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: dict[str, int] = defaultdict(int)

    for row in rows:
        if row.status != TX_COMPLETED or row.transaction_type not in (TX_EXPENSE, TX_REFUND):
            continue
        category = row.category or UNCATEGORIZED
        # expenses are negative, refunds positive: spending is the negated sum
        amounts[category] -= to_money(row.amount)
        if row.transaction_type == TX_EXPENSE:
            counts[category] += 1

    items = [
        CategorySpendItem(category=c, amount=amounts[c], count=counts[c])
        for c in amounts
    ]
    return sorted(items, key=lambda item: item.amount, reverse=True)


def _monthly_trend(rows: list[LedgerTransaction]) -> list[MonthlyFlowItem]:
    inflow: dict[int, Decimal] = defaultdict(lambda: ZERO)
    outflow: dict[int, Decimal] = defaultdict(lambda: ZERO)

    for row in rows:
        if row.status != TX_COMPLETED:
            continue
        amount = to_money(row.amount)
        if amount >= 0:
            inflow[row.occurred_at.month] += amount
        else:
            outflow[row.occurred_at.month] -= amount

    return [
        MonthlyFlowItem(month=m, label=MONTH_LABELS[m], inflow=inflow[m], outflow=outflow[m])
        for m in range(1, 13)
    ]


def tier_summary(db: Session, tier: TierRef, fiscal_year: int) -> TierSummaryResponse:
    """Build the financial summary of one tier for a fiscal year.

    Raises:
        NotFoundError: If the tier has no budget for the year.
    """
    budget = ledger_store.get_balance(db, tier.kind, tier.id, fiscal_year)
    rows = _year_transactions(db, tier, fiscal_year)
    children = ledger_store.list_child_balances(db, tier.kind, tier.id, fiscal_year)

    status_counts = dict(
        db.query(BudgetRequest.status, func.count(BudgetRequest.id))
        .filter(
            BudgetRequest.requester_kind == tier.kind,
            BudgetRequest.requester_id == tier.id,
            BudgetRequest.fiscal_year == fiscal_year,
        )
        .group_by(BudgetRequest.status)
        .all()
    )

    logger.debug("tier_summary: %s fy=%d rows=%d", tier.label, fiscal_year, len(rows))
    return TierSummaryResponse(
        balance=build_balance_response(budget),
        spending_by_category=_spending_by_category(rows),
        monthly_trend=_monthly_trend(rows),
        children=[build_balance_response(c) for c in children],
        requests_by_status={s: int(status_counts.get(s, 0)) for s in REQUEST_STATUSES},
    )


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def _export_content(db: Session, tier: TierRef, fiscal_year: int):
    summary = tier_summary(db, tier, fiscal_year)
    balance = summary.balance
    kpis = {
        "Total allocation": balance.total_allocation,
        "Remaining": balance.remaining_balance,
        "Utilized": balance.utilized_amount,
        "Utilization %": f"{balance.utilization_pct:.2f}%",
    }
    filters = {"Tier": tier.label, "Fiscal year": str(fiscal_year)}

    rows = [
        [
            t.occurred_at,
            t.transaction_type,
            t.status,
            f"{t.counterpart_kind}:{t.counterpart_id}" if t.counterpart_kind else "",
            t.category or "",
            t.description or "",
            to_money(t.amount),
        ]
        for t in _year_transactions(db, tier, fiscal_year, limit=EXPORT_ROW_LIMIT)
    ]
    return summary, kpis, filters, rows


def export_excel(db: Session, tier: TierRef, fiscal_year: int) -> bytes:
    """Summary KPIs, spending by category and the transaction table as ``.xlsx``."""
    summary, kpis, filters, rows = _export_content(db, tier, fiscal_year)

    exporter = ExcelExporter(title=f"{tier.label} {fiscal_year}", filters=filters)
    exporter.add_header()
    exporter.add_kpi_row(kpis)
    exporter.add_data_table(
        ["Category", "Spent", "Expenses"],
        [[c.category, c.amount, c.count] for c in summary.spending_by_category],
        numeric_cols={1},
        title="Spending by category",
    )
    exporter.add_data_table(_EXPORT_HEADERS, rows, numeric_cols={6}, title="Transactions")
    content = exporter.finalize()

    logger.info(
        "export_excel: %s fy=%d rows=%d bytes=%d", tier.label, fiscal_year, len(rows), len(content)
    )
    return content


def export_pdf(db: Session, tier: TierRef, fiscal_year: int) -> bytes:
    """Summary KPIs, spending by category and the transaction table as ``.pdf``."""
    summary, kpis, filters, rows = _export_content(db, tier, fiscal_year)

    exporter = PdfExporter(title=f"{tier.label} {fiscal_year}", filters=filters)
    exporter.add_header()
    exporter.add_kpi_section(kpis)
    exporter.add_table(
        ["Category", "Spent", "Expenses"],
        [[c.category, c.amount, str(c.count)] for c in summary.spending_by_category],
        numeric_cols={1, 2},
        section_title="Spending by category",
    )
    exporter.add_table(_EXPORT_HEADERS, rows, numeric_cols={6}, section_title="Transactions")
    content = exporter.build()

    logger.info(
        "export_pdf: %s fy=%d rows=%d bytes=%d", tier.label, fiscal_year, len(rows), len(content)
    )
    return content
