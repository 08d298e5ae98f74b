"""
Pydantic v2 schemas for tier balances, allocations and region funding.

These models define the JSON shapes for ``/api/balances`` and
``/api/allocations``.  They are deliberately free of SQLAlchemy imports so
that the schema layer stays decoupled from ORM internals.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from budget_ledger.schemas.common import TierKind, TierRef, check_client_key, coerce_amount


# ---------------------------------------------------------------------------
# Tier balance
# ---------------------------------------------------------------------------


class TierBudgetResponse(BaseModel):
    """Balance card for one tier and fiscal year.

    Attributes:
        tier_kind: Tier kind.
        tier_id: Tier identifier.
        fiscal_year: Budget year.
        parent_kind: Kind of the funding tier (None for regions).
        parent_id: Identifier of the funding tier.
        total_allocation: Everything allocated into the tier.
        remaining_balance: Funds still available.
        utilized_amount: ``total_allocation - remaining_balance``.
        utilization_pct: ``utilized_amount / total_allocation × 100``.
        version: Optimistic concurrency counter.
        updated_at: Last adjustment timestamp.
    """

    tier_kind: TierKind
    tier_id: str
    fiscal_year: int
    parent_kind: str | None = None
    parent_id: str | None = None
    total_allocation: Decimal
    remaining_balance: Decimal
    utilized_amount: Decimal
    utilization_pct: float = Field(..., ge=0.0, le=100.0)
    version: int
    updated_at: datetime | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "tier_kind": "organization",
                "tier_id": "org-a",
                "fiscal_year": 2026,
                "parent_kind": "region",
                "parent_id": "region-1",
                "total_allocation": "40000.00",
                "remaining_balance": "30000.00",
                "utilized_amount": "10000.00",
                "utilization_pct": 25.0,
                "version": 2,
                "updated_at": "2026-03-02T10:15:00",
            }
        }
    )


class ChildBudgetsResponse(BaseModel):
    """Budgets allocated from one parent tier, e.g. the farmers of an organization."""

    parent: TierBudgetResponse
    children: list[TierBudgetResponse]
    allocated_to_children: Decimal


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


class AllocationCreate(BaseModel):
    """Body of ``POST /api/allocations``.

    Attributes:
        parent: Tier whose remaining balance funds the allocation.
        child: Tier receiving the funds (exactly one level below).
        fiscal_year: Budget year of both balances.
        amount: Positive amount with at most two decimals.
        description: Optional note stored on both transaction legs.
        idempotency_key: Retry token; reusing it never applies twice.
    """

    parent: TierRef
    child: TierRef
    fiscal_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal
    description: str | None = Field(default=None, max_length=500)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return coerce_amount(value)

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value):
        return check_client_key(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "parent": {"kind": "region", "id": "region-1"},
                "child": {"kind": "organization", "id": "org-a"},
                "fiscal_year": 2026,
                "amount": "40000.00",
                "description": "Q1 operating allocation",
                "idempotency_key": "alloc-2026-q1-org-a",
            }
        }
    )


class AllocationResult(BaseModel):
    """Outcome of a successful (or replayed) allocation.

    Attributes:
        idempotency_key: Key shared by both transaction legs.
        amount: Amount moved.
        parent: Parent balance after the debit.
        child: Child balance after the credit.
        debit_transaction_id: Transaction recorded on the parent.
        credit_transaction_id: Transaction recorded on the child.
        attempts: Number of attempts used (1 unless conflicts were retried).
        replayed: True when the key had already been applied.
    """

    idempotency_key: str
    amount: Decimal
    parent: TierBudgetResponse
    child: TierBudgetResponse
    debit_transaction_id: int
    credit_transaction_id: int
    attempts: int = 1
    replayed: bool = False


# ---------------------------------------------------------------------------
# Region funding (superadmin top-up from the national pool)
# ---------------------------------------------------------------------------


class FundingCreate(BaseModel):
    """Body of ``POST /api/balances/regions/{region_id}/fund``."""

    fiscal_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal
    description: str | None = Field(default=None, max_length=500)
    idempotency_key: str | None = Field(default=None, min_length=1, max_length=100)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return coerce_amount(value)

    @field_validator("idempotency_key")
    @classmethod
    def validate_idempotency_key(cls, value):
        return check_client_key(value)


class FundingResult(BaseModel):
    """Outcome of a region top-up."""

    idempotency_key: str
    amount: Decimal
    tier: TierBudgetResponse
    transaction_id: int
    attempts: int = 1
    replayed: bool = False
