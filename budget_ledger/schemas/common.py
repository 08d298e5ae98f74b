"""
Shared Pydantic v2 schemas reused across multiple modules.

Provides the tier reference, the money field validator, pagination and
the structured error envelope so that each module can compose them
without duplicating field definitions.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from budget_ledger.errors import InvalidIdempotencyKeyError
from budget_ledger.utils.constants import RESERVED_KEY_PREFIXES
from budget_ledger.utils.money import parse_amount

TierKind = Literal["region", "organization", "farmer"]
RequestTargetKind = Literal["region", "organization", "national"]


def coerce_amount(value: Any) -> Decimal:
    """``mode="before"`` validator body shared by every money input field.

    JSON numbers arrive as ``float``; their shortest ``repr`` is the
    literal the client sent, so it is parsed as a string rather than as a
    binary float.
    """
    if isinstance(value, float):
        value = repr(value)
    return parse_amount(value)


def check_client_key(value: str | None) -> str | None:
    """Reject caller keys that could collide with request settlements or refunds."""
    if value is not None and value.startswith(RESERVED_KEY_PREFIXES):
        raise InvalidIdempotencyKeyError(value)
    return value


class TierRef(BaseModel):
    """Reference to one tier of the hierarchy.

    Attributes:
        kind: ``"region"``, ``"organization"`` or ``"farmer"``.
        id: Opaque identifier of the region, organization or farmer.
    """

    kind: TierKind = Field(..., description="Tier kind.")
    id: str = Field(..., min_length=1, max_length=64, description="Tier identifier.")

    model_config = {"frozen": True}

    @property
    def label(self) -> str:
        return f"{self.kind}:{self.id}"


class PaginationParams(BaseModel):
    """Pagination parameters for list endpoints.

    Attributes:
        page: 1-based page number.
        page_size: Number of rows per page (capped at 200 to protect DB).
    """

    page: int = Field(default=1, ge=1, description="Page number (1-based).")
    page_size: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Rows per page (max 200).",
    )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class MessageResponse(BaseModel):
    """Generic message envelope for operations that do not return a resource."""

    message: str = Field(..., description="Short summary of the result.")
    detail: str | None = Field(default=None, description="Additional context.")


class ErrorResponse(BaseModel):
    """Structured error body rendered for every ``LedgerError``.

    Attributes:
        error: Machine-readable error code, e.g. ``"INSUFFICIENT_FUNDS"``.
        message: Human-readable explanation.
        available_balance: Current remaining balance, when money is involved.
        requested: Amount the failed operation asked for.
        shortfall: ``requested - available_balance`` for insufficient funds.
    """

    error: str
    message: str
    available_balance: Decimal | None = None
    requested: Decimal | None = None
    shortfall: Decimal | None = None
