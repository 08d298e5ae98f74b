"""BudgetRequest model — requester-initiated funding ask."""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.sql import func

from budget_ledger.database import Base


class BudgetRequest(Base):
    """Funding request from a tier to the tier one level up.

    Valid pairs are farmer → organization, organization → region and
    region → national (superadmin pool).  The status moves exactly once,
    ``pending`` → ``approved`` | ``rejected``, and only through
    ``request_service.decide_request``.  Rows are never deleted.

    Attributes:
        id: Primary key.
        requester_kind: Tier kind asking for funds.
        requester_id: Identifier of the requesting tier.
        target_kind: Tier kind expected to fund the request.
        target_id: Identifier of the funding tier.
        fiscal_year: Budget year the funds are requested for.
        amount: Requested amount (positive).
        reason: Free-text purpose supplied by the requester.
        status: ``"pending"``, ``"approved"`` or ``"rejected"``.
        created_by: Opaque identity of the submitting user.
        created_at: Submission timestamp.
        decided_at: Decision timestamp (written once).
        decided_by: Opaque identity of the decider (written once).
        decision_notes: Decider's notes (written once).
    """

    __tablename__ = "budget_request"
    __table_args__ = (
        Index("ix_budget_request_target_status", "target_kind", "target_id", "status"),
        Index("ix_budget_request_requester", "requester_kind", "requester_id"),
        CheckConstraint("amount > 0", name="ck_budget_request_amount_pos"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    requester_kind = Column(String(20), nullable=False)
    requester_id = Column(String(64), nullable=False)
    target_kind = Column(String(20), nullable=False)
    target_id = Column(String(64), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default="pending", nullable=False)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)
    decided_at = Column(DateTime, nullable=True)
    decided_by = Column(String(64), nullable=True)
    decision_notes = Column(Text, nullable=True)
