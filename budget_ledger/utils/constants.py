"""
Application-wide constants for the budget ledger.

Defines the tier hierarchy, workflow states and transaction enumerations
used across models, services, schemas and routers.
"""

from typing import Final

# ---------------------------------------------------------------------------
# Tier hierarchy
# ---------------------------------------------------------------------------

TIER_REGION: Final[str] = "region"
TIER_ORGANIZATION: Final[str] = "organization"
TIER_FARMER: Final[str] = "farmer"

# Superadmin funding pool. Region requests target it; it has no balance row.
TIER_NATIONAL: Final[str] = "national"
NATIONAL_POOL_ID: Final[str] = "national"

TIER_KINDS: Final[list[str]] = [TIER_REGION, TIER_ORGANIZATION, TIER_FARMER]

# child kind -> parent kind, one level up
PARENT_KIND: Final[dict[str, str]] = {
    TIER_FARMER: TIER_ORGANIZATION,
    TIER_ORGANIZATION: TIER_REGION,
    TIER_REGION: TIER_NATIONAL,
}

# ---------------------------------------------------------------------------
# Budget request states
# ---------------------------------------------------------------------------

REQUEST_PENDING: Final[str] = "pending"
REQUEST_APPROVED: Final[str] = "approved"
REQUEST_REJECTED: Final[str] = "rejected"

REQUEST_STATUSES: Final[list[str]] = [
    REQUEST_PENDING,
    REQUEST_APPROVED,
    REQUEST_REJECTED,
]

REQUEST_DECISIONS: Final[list[str]] = [REQUEST_APPROVED, REQUEST_REJECTED]

# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

TX_ALLOCATION: Final[str] = "allocation"
TX_EXPENSE: Final[str] = "expense"
TX_REFUND: Final[str] = "refund"
TX_REQUEST_SETTLEMENT: Final[str] = "request_settlement"

TRANSACTION_TYPES: Final[list[str]] = [
    TX_ALLOCATION,
    TX_EXPENSE,
    TX_REFUND,
    TX_REQUEST_SETTLEMENT,
]

TX_PENDING: Final[str] = "pending"
TX_COMPLETED: Final[str] = "completed"
TX_CANCELLED: Final[str] = "cancelled"
TX_REJECTED: Final[str] = "rejected"

TRANSACTION_STATUSES: Final[list[str]] = [
    TX_PENDING,
    TX_COMPLETED,
    TX_CANCELLED,
    TX_REJECTED,
]

# Legal status transitions after creation
TX_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    TX_PENDING: frozenset({TX_COMPLETED, TX_CANCELLED}),
    TX_COMPLETED: frozenset(),
    TX_CANCELLED: frozenset(),
    TX_REJECTED: frozenset(),
}

LEG_DEBIT: Final[str] = "debit"
LEG_CREDIT: Final[str] = "credit"
LEG_SINGLE: Final[str] = "single"

# Keys the ledger derives itself; callers may not supply them.
REQUEST_KEY_PREFIX: Final[str] = "request:"
REFUND_KEY_PREFIX: Final[str] = "refund:"
RESERVED_KEY_PREFIXES: Final[tuple[str, ...]] = (REQUEST_KEY_PREFIX, REFUND_KEY_PREFIX)

# ---------------------------------------------------------------------------
# Expense categories (as offered by the expense entry screen)
# ---------------------------------------------------------------------------

EXPENSE_CATEGORIES: Final[list[str]] = [
    "Seeds",
    "Fertilizer",
    "Equipment",
    "Labor",
    "Transport",
    "Training",
    "Utilities",
    "Other",
]

# ---------------------------------------------------------------------------
# Money
# ---------------------------------------------------------------------------

MONEY_PLACES: Final[int] = 2
MONEY_MAX_DIGITS: Final[int] = 15

MONTH_LABELS: Final[list[str]] = [
    "",
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
]
