"""
Pydantic v2 schemas for the transaction history, wallet and expense entry
endpoints (``/api/transactions``).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from budget_ledger.schemas.common import TierRef, check_client_key, coerce_amount
from budget_ledger.schemas.ledger import TierBudgetResponse


class TransactionResponse(BaseModel):
    """One ledger transaction as shown in history tables."""

    id: int
    tier_kind: str
    tier_id: str
    fiscal_year: int
    counterpart_kind: str | None = None
    counterpart_id: str | None = None
    transaction_type: str
    amount: Decimal
    description: str | None = None
    category: str | None = None
    status: str
    idempotency_key: str
    leg: str
    request_id: int | None = None
    related_transaction_id: int | None = None
    actor_id: str | None = None
    occurred_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionPage(BaseModel):
    """Paginated transaction history for one tier, newest first.

    Attributes:
        total: Rows matching the filters inside the lookback window.
        page: 1-based page number.
        page_size: Rows per page.
        since: Start of the lookback window (inclusive).
        items: Page rows ordered by ``occurred_at`` descending.
    """

    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    since: datetime
    items: list[TransactionResponse]


class WalletItem(BaseModel):
    """Merged wallet activity row: a transaction or a pending request."""

    source: Literal["transaction", "request"]
    id: int
    item_type: str
    amount: Decimal
    description: str | None = None
    status: str
    occurred_at: datetime


class WalletResponse(BaseModel):
    """Wallet view: balance summary plus recent activity.

    A tier that has not received any allocation yet has a zero balance
    (``balance.version == 0``).
    """

    balance: TierBudgetResponse
    pending_requests_total: Decimal
    activity: list[WalletItem]


class ExpenseCreate(BaseModel):
    """Body of ``POST /api/transactions/expenses``.

    Attributes:
        tier: Tier that spends the money.
        fiscal_year: Budget year of the balance to debit.
        amount: Positive amount.
        description: What the money was spent on.
        category: Expense category.
        expense_date: Date of the expense (defaults to now).
        pending: Reserve the funds now and settle later.
        idempotency_key: Retry token.
    """

    tier: TierRef
    fiscal_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal
    description: str = Field(..., min_length=1, max_length=500)
    category: str | None = Field(default=None, max_length=100)
    expense_date: date | None = None
    pending: bool = False
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return coerce_amount(value)

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value):
        return check_client_key(value)


class RefundCreate(BaseModel):
    """Body of ``POST /api/transactions/{id}/refund``."""

    description: str | None = Field(default=None, max_length=500)


class ExpenseResult(BaseModel):
    """Transaction plus the tier balance after the movement."""

    transaction: TransactionResponse
    balance: TierBudgetResponse
    replayed: bool = False
