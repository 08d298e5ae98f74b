"""TierMembership model — mirror of the external membership directory."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from budget_ledger.database import Base


class TierMembership(Base):
    """Whether a child tier is an active member of a parent tier.

    Kept in sync by the organization/region management system through
    ``PUT /api/memberships``; the ledger only reads it as a precondition
    before allocating to, or accepting a request from, a child tier.

    Attributes:
        id: Primary key.
        child_kind: ``"farmer"`` or ``"organization"``.
        child_id: Identifier of the member.
        parent_kind: ``"organization"`` or ``"region"``.
        parent_id: Identifier of the group.
        active: Whether the membership is currently active.
        updated_at: Last sync timestamp.
    """

    __tablename__ = "tier_membership"
    __table_args__ = (
        UniqueConstraint(
            "child_kind", "child_id", "parent_kind", "parent_id",
            name="uq_tier_membership_pair",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    child_kind = Column(String(20), nullable=False)
    child_id = Column(String(64), nullable=False)
    parent_kind = Column(String(20), nullable=False)
    parent_id = Column(String(64), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now(), nullable=False)
