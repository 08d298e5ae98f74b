"""TierBudget model — per-tier, per-fiscal-year balance record."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from budget_ledger.database import Base


class TierBudget(Base):
    """Balance of one tier (region, organization or farmer) for one fiscal year.

    Rows are created lazily on first allocation and mutated only through
    ``ledger_store.compare_and_adjust``; ``version`` grows by exactly one on
    every successful adjustment and drives optimistic concurrency control.

    Attributes:
        id: Primary key.
        tier_kind: ``"region"``, ``"organization"`` or ``"farmer"``.
        tier_id: Opaque identifier of the region, organization or farmer.
        fiscal_year: Budget year the balance belongs to.
        parent_kind: Kind of the tier that funds this one (None for regions).
        parent_id: Identifier of the funding tier (None for regions).
        total_allocation: Everything ever allocated into this tier.
        remaining_balance: Funds not yet spent or re-allocated downward.
        version: Optimistic concurrency counter.
        created_at: Record creation timestamp.
        updated_at: Last adjustment timestamp.
    """

    __tablename__ = "tier_budget"
    __table_args__ = (
        UniqueConstraint(
            "tier_kind", "tier_id", "fiscal_year", name="uq_tier_budget_tier_year"
        ),
        CheckConstraint("remaining_balance >= 0", name="ck_tier_budget_remaining_nonneg"),
        CheckConstraint(
            "remaining_balance <= total_allocation",
            name="ck_tier_budget_remaining_le_total",
        ),
        Index("ix_tier_budget_parent", "parent_kind", "parent_id", "fiscal_year"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tier_kind = Column(String(20), nullable=False)
    tier_id = Column(String(64), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    parent_kind = Column(String(20), nullable=True)
    parent_id = Column(String(64), nullable=True)
    total_allocation = Column(Numeric(15, 2), default=0, nullable=False)
    remaining_balance = Column(Numeric(15, 2), default=0, nullable=False)
    version = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def utilized_amount(self):
        return self.total_allocation - self.remaining_balance

    @property
    def label(self) -> str:
        return f"{self.tier_kind}:{self.tier_id}"
