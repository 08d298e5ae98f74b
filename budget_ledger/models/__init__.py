"""SQLAlchemy models package for the budget ledger.

Importing all models here ensures that SQLAlchemy's mapper registry is
populated before ``Base.metadata.create_all()`` or Alembic migrations run.

Usage from other modules:
    from budget_ledger.models import TierBudget, LedgerTransaction
"""

# Collaborator mirror
from budget_ledger.models.tier_membership import TierMembership  # noqa: F401

# Balances
from budget_ledger.models.tier_budget import TierBudget  # noqa: F401

# Workflow and audit trail
from budget_ledger.models.budget_request import BudgetRequest  # noqa: F401
from budget_ledger.models.ledger_transaction import LedgerTransaction  # noqa: F401

__all__ = [
    "TierMembership",
    "TierBudget",
    "BudgetRequest",
    "LedgerTransaction",
]
