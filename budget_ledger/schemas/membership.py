"""
Pydantic v2 schemas for the membership sync endpoint (``/api/memberships``).
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, model_validator

from budget_ledger.schemas.common import TierRef
from budget_ledger.utils.constants import PARENT_KIND


class MembershipUpdate(BaseModel):
    """Body of ``PUT /api/memberships``."""

    child: TierRef
    parent: TierRef
    active: bool = True

    @model_validator(mode="after")
    def check_levels(self) -> "MembershipUpdate":
        if PARENT_KIND.get(self.child.kind) != self.parent.kind:
            raise ValueError(
                f"A {self.child.kind} can only be a member of a "
                f"{PARENT_KIND.get(self.child.kind)}, not a {self.parent.kind}."
            )
        return self


class MembershipResponse(BaseModel):
    """Stored membership row."""

    child_kind: str
    child_id: str
    parent_kind: str
    parent_id: str
    active: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
