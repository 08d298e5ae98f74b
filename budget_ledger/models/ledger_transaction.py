"""LedgerTransaction model — append-only audit trail of balance movements."""

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from budget_ledger.database import Base


class LedgerTransaction(Base):
    """One movement (or recorded non-movement) on a single tier.

    Amounts are signed: positive credits the tier, negative debits it.
    An allocation produces two rows sharing one ``idempotency_key``
    (``leg="debit"`` on the parent, ``leg="credit"`` on the child); the
    ``(idempotency_key, leg)`` pair is unique so retries cannot record the
    same movement twice.  After creation only ``status`` may change, and
    only from ``pending`` to ``completed`` or ``cancelled``.

    Attributes:
        id: Primary key.
        tier_kind: Kind of the tier whose balance is affected.
        tier_id: Identifier of that tier.
        fiscal_year: Budget year of the affected balance.
        counterpart_kind: Kind of the funding/funded tier (allocations only).
        counterpart_id: Identifier of the counterpart tier.
        transaction_type: ``allocation``, ``expense``, ``refund`` or
            ``request_settlement``.
        amount: Signed amount.
        description: Human-readable description.
        category: Expense category (expenses only).
        status: ``pending``, ``completed``, ``cancelled`` or ``rejected``.
        idempotency_key: Caller-supplied (or generated) retry token.
        leg: ``debit``, ``credit`` or ``single``.
        request_id: FK to the BudgetRequest that produced this row.
        related_transaction_id: FK to the expense a refund reverses.
        actor_id: Opaque identity of the user who caused the movement.
        occurred_at: Timestamp of the movement.
    """

    __tablename__ = "ledger_transaction"
    __table_args__ = (
        UniqueConstraint("idempotency_key", "leg", name="uq_ledger_transaction_key_leg"),
        Index("ix_ledger_transaction_tier", "tier_kind", "tier_id", "occurred_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tier_kind = Column(String(20), nullable=False)
    tier_id = Column(String(64), nullable=False)
    fiscal_year = Column(Integer, nullable=False)
    counterpart_kind = Column(String(20), nullable=True)
    counterpart_id = Column(String(64), nullable=True)
    transaction_type = Column(String(30), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False)
    idempotency_key = Column(String(128), nullable=False)
    leg = Column(String(10), nullable=False)
    request_id = Column(Integer, ForeignKey("budget_request.id"), nullable=True)
    related_transaction_id = Column(
        Integer, ForeignKey("ledger_transaction.id"), nullable=True
    )
    actor_id = Column(String(64), nullable=True)
    occurred_at = Column(DateTime, default=func.now(), nullable=False)

    # Relationships
    budget_request = relationship("BudgetRequest", lazy="select")
