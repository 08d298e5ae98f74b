"""
Pydantic v2 schemas for the budget request workflow (``/api/requests``).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from budget_ledger.schemas.common import RequestTargetKind, TierKind, coerce_amount
from budget_ledger.schemas.ledger import AllocationResult, FundingResult


class BudgetRequestCreate(BaseModel):
    """Body of ``POST /api/requests``.

    Attributes:
        requester_kind: Kind of the tier asking for funds.
        requester_id: Identifier of the requesting tier.
        target_kind: Kind of the tier one level up (``national`` for regions).
        target_id: Identifier of the funding tier; ignored for ``national``.
        fiscal_year: Budget year the funds are requested for.
        amount: Requested amount (positive, at most two decimals).
        reason: Purpose of the request.
    """

    requester_kind: TierKind
    requester_id: str = Field(..., min_length=1, max_length=64)
    target_kind: RequestTargetKind
    target_id: str | None = Field(default=None, min_length=1, max_length=64)
    fiscal_year: int = Field(..., ge=2000, le=2100)
    amount: Decimal
    reason: str | None = Field(default=None, max_length=2000)

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, value):
        return coerce_amount(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "requester_kind": "farmer",
                "requester_id": "farmer-f",
                "target_kind": "organization",
                "target_id": "org-a",
                "fiscal_year": 2026,
                "amount": "10000.00",
                "reason": "Fertilizer for the wet season planting",
            }
        }
    )


class BudgetRequestResponse(BaseModel):
    """Full representation of a budget request."""

    id: int
    requester_kind: str
    requester_id: str
    target_kind: str
    target_id: str
    fiscal_year: int
    amount: Decimal
    reason: str | None = None
    status: str
    created_by: str | None = None
    created_at: datetime
    decided_at: datetime | None = None
    decided_by: str | None = None
    decision_notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class BudgetRequestListResponse(BaseModel):
    """Paginated request list."""

    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    items: list[BudgetRequestResponse]


class RequestFilterParams(BaseModel):
    """Filters for ``GET /api/requests``; omitted fields do not restrict."""

    status: Literal["pending", "approved", "rejected"] | None = None
    requester_kind: TierKind | None = None
    requester_id: str | None = None
    target_kind: RequestTargetKind | None = None
    target_id: str | None = None
    fiscal_year: int | None = Field(default=None, ge=2000, le=2100)


class DecisionCreate(BaseModel):
    """Body of ``POST /api/requests/{id}/decision``."""

    decision: Literal["approved", "rejected"]
    notes: str | None = Field(default=None, max_length=2000)


class DecisionResult(BaseModel):
    """Outcome of a decision call.

    ``already_decided`` is True when the request had reached a terminal
    state before this call; the call was then a no-op and ``request``
    shows the original decision.
    """

    request: BudgetRequestResponse
    already_decided: bool = False
    allocation: AllocationResult | None = None
    funding: FundingResult | None = None
    settlement_transaction_id: int | None = None
