"""
Ledger error taxonomy.

Services raise these; ``main.py`` registers a single exception handler that
renders any ``LedgerError`` as structured JSON, so the UI layer never has to
parse generic server errors.  Errors that concern money carry the current
available balance so the caller can show a corrective message.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for every ledger failure surfaced to callers."""

    status_code: int = 400

    def __init__(self, message: str, code: str = "LEDGER_ERROR") -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class InsufficientFundsError(LedgerError):
    """
    Raised when a debit would take a tier's remaining balance below zero.

    Attributes:
        tier: ``"<kind>:<id>"`` label of the tier that lacks funds.
        available: Remaining balance at the time of the check.
        requested: Amount the operation tried to debit.
    """

    status_code = 409

    def __init__(self, tier: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient funds at {tier}: requested {requested:,.2f} "
            f"but only {available:,.2f} is available.",
            code="INSUFFICIENT_FUNDS",
        )
        self.tier = tier
        self.available = available
        self.requested = requested

    @property
    def shortfall(self) -> Decimal:
        return max(self.requested - self.available, Decimal("0.00"))

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            tier=self.tier,
            available_balance=str(self.available),
            requested=str(self.requested),
            shortfall=str(self.shortfall),
        )
        return payload


class VersionConflictError(LedgerError):
    """Raised when a tier row changed between read and conditional update."""

    status_code = 409

    def __init__(self, tier: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Concurrent modification of {tier}: expected version "
            f"{expected_version}, found {actual_version}.",
            code="VERSION_CONFLICT",
        )
        self.tier = tier
        self.expected_version = expected_version
        self.actual_version = actual_version


class LedgerBusyError(LedgerError):
    """Raised when version conflicts persist after the bounded retry budget."""

    status_code = 503

    def __init__(self, tier: str, attempts: int, available: Decimal | None) -> None:
        super().__init__(
            f"{tier} is busy: gave up after {attempts} conflicting attempt(s). "
            "Please retry.",
            code="BUSY",
        )
        self.tier = tier
        self.attempts = attempts
        self.available = available

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["tier"] = self.tier
        payload["attempts"] = self.attempts
        if self.available is not None:
            payload["available_balance"] = str(self.available)
        return payload


class LedgerTimeoutError(LedgerError):
    """Raised when an operation exceeds its time bound; nothing was applied."""

    status_code = 504

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(
            f"{operation} did not finish within {timeout_seconds:g}s and was "
            "not applied.",
            code="TIMEOUT",
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class NotFoundError(LedgerError):
    """Raised when a referenced tier budget, request or transaction is missing."""

    status_code = 404

    def __init__(self, message: str) -> None:
        super().__init__(message, code="NOT_FOUND")


class InvalidAmountError(LedgerError, ValueError):
    """
    Raised for non-positive, non-finite or malformed amounts.

    Also a ``ValueError`` so that pydantic validators report it as a
    regular validation error at the HTTP boundary.
    """

    status_code = 422

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_AMOUNT")


class MembershipInvalidError(LedgerError):
    """Raised when a child tier is not validly scoped under the parent tier."""

    status_code = 422

    def __init__(self, child: str, parent: str) -> None:
        super().__init__(
            f"{child} is not an active member of {parent}.",
            code="MEMBERSHIP_INVALID",
        )
        self.child = child
        self.parent = parent


class InvalidHierarchyError(LedgerError):
    """Raised when two tiers are not exactly one hierarchy level apart."""

    status_code = 422

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_HIERARCHY")


class InvalidTransitionError(LedgerError):
    """Raised for an illegal transaction status transition."""

    status_code = 409

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_TRANSITION")


class IdempotencyKeyReusedError(LedgerError):
    """Raised when a key already recorded a different movement."""

    status_code = 409

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            f"Idempotency key {idempotency_key!r} was already used for a "
            "different operation.",
            code="IDEMPOTENCY_KEY_REUSED",
        )
        self.idempotency_key = idempotency_key


class InvalidIdempotencyKeyError(LedgerError, ValueError):
    """Raised when a caller key uses a prefix the ledger keeps for itself."""

    status_code = 422

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            f"Idempotency key {idempotency_key!r} uses a reserved prefix.",
            code="INVALID_IDEMPOTENCY_KEY",
        )
        self.idempotency_key = idempotency_key


class BalanceBoundsError(LedgerError):
    """Raised when a credit would lift remaining balance above total allocation."""

    status_code = 409

    def __init__(self, tier: str, remaining: Decimal, total: Decimal) -> None:
        super().__init__(
            f"Adjustment rejected at {tier}: remaining balance {remaining:,.2f} "
            f"would exceed total allocation {total:,.2f}.",
            code="BALANCE_BOUNDS",
        )
        self.tier = tier
        self.remaining = remaining
        self.total = total


class MissingActorError(LedgerError):
    """Raised when a write arrives without the caller's identity header."""

    status_code = 401

    def __init__(self) -> None:
        super().__init__("Missing X-Actor-Id header.", code="UNAUTHENTICATED")
