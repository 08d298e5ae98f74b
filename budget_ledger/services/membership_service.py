"""
Membership directory — answers "is tier X an active member of tier Y".

The organization/region management system owns membership; it pushes
changes through ``set_membership`` (``PUT /api/memberships``) and the
ledger only reads them before allocating to, or accepting a request from,
a child tier.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from budget_ledger.models.tier_membership import TierMembership
from budget_ledger.schemas.common import TierRef
from budget_ledger.services.ledger_store import utcnow

logger = logging.getLogger(__name__)


def is_active_member(db: Session, child: TierRef, parent: TierRef) -> bool:
    """Return True if ``child`` is currently an active member of ``parent``."""
    return (
        db.query(TierMembership.id)
        .filter(
            TierMembership.child_kind == child.kind,
            TierMembership.child_id == child.id,
            TierMembership.parent_kind == parent.kind,
            TierMembership.parent_id == parent.id,
            TierMembership.active.is_(True),
        )
        .first()
        is not None
    )


def set_membership(
    db: Session, child: TierRef, parent: TierRef, active: bool = True
) -> TierMembership:
    """Insert or update one membership row and commit.

    Args:
        db: Active SQLAlchemy session.
        child: Member tier (farmer or organization).
        parent: Group tier (organization or region).
        active: New membership state.

    Returns:
        The persisted ``TierMembership`` row.
    """
    membership: TierMembership | None = (
        db.query(TierMembership)
        .filter(
            TierMembership.child_kind == child.kind,
            TierMembership.child_id == child.id,
            TierMembership.parent_kind == parent.kind,
            TierMembership.parent_id == parent.id,
        )
        .first()
    )
    if membership is None:
        membership = TierMembership(
            child_kind=child.kind,
            child_id=child.id,
            parent_kind=parent.kind,
            parent_id=parent.id,
        )
        db.add(membership)

    membership.active = active
    membership.updated_at = utcnow()
    db.commit()
    db.refresh(membership)

    logger.info(
        "set_membership: %s in %s active=%s", child.label, parent.label, active
    )
    return membership
