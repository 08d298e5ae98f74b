"""
Transaction Recorder — history, wallet and expense entry for one tier.

Read paths (``list_transactions``, ``get_wallet``) never mutate and never
retry; storage errors propagate to the caller.  Expense entry debits the
tier's remaining balance through ``compare_and_adjust`` inside the shared
unit of work, so the transaction row and the balance change commit
together.

Expense lifecycle::

    record_expense(pending=True)  -> pending ──complete──> completed
                                           └──cancel────> cancelled (funds restored)
    record_expense(pending=False) -> completed ──refund──> + one refund row
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta
from typing import Any

from sqlalchemy.orm import Session

from budget_ledger.config import get_settings
from budget_ledger.errors import (
    IdempotencyKeyReusedError,
    InvalidTransitionError,
    NotFoundError,
)
from budget_ledger.models.budget_request import BudgetRequest
from budget_ledger.models.ledger_transaction import LedgerTransaction
from budget_ledger.schemas.common import PaginationParams, TierRef, check_client_key
from budget_ledger.schemas.transaction import (
    ExpenseResult,
    TransactionPage,
    TransactionResponse,
    WalletItem,
    WalletResponse,
)
from budget_ledger.services import ledger_store
from budget_ledger.services.allocation_service import new_idempotency_key, run_atomic
from budget_ledger.services.balance_service import (
    build_balance_response,
    empty_balance_response,
)
from budget_ledger.utils.constants import (
    LEG_SINGLE,
    REFUND_KEY_PREFIX,
    REQUEST_PENDING,
    TX_CANCELLED,
    TX_COMPLETED,
    TX_EXPENSE,
    TX_PENDING,
    TX_REFUND,
    TX_TRANSITIONS,
)
from budget_ledger.utils.money import ZERO, parse_amount, to_money

logger = logging.getLogger(__name__)

WALLET_ACTIVITY_LIMIT = 20


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def lookback_start(lookback_days: int | None) -> datetime:
    """Start of the history window, clamped to the configured maximum."""
    settings = get_settings()
    days = lookback_days or settings.LEDGER_DEFAULT_LOOKBACK_DAYS
    days = max(1, min(days, settings.LEDGER_MAX_LOOKBACK_DAYS))
    return ledger_store.utcnow() - timedelta(days=days)


def list_transactions(
    db: Session,
    tier: TierRef,
    pagination: PaginationParams,
    fiscal_year: int | None = None,
    lookback_days: int | None = None,
    transaction_type: str | None = None,
    status: str | None = None,
) -> TransactionPage:
    """Return one page of a tier's transactions, newest first.

    Args:
        db: Active SQLAlchemy session.
        tier: Tier whose balance the rows affect.
        pagination: Page and page size.
        fiscal_year: Restrict to one budget year.
        lookback_days: Window size in days (default and cap from settings).
        transaction_type: Restrict to one type.
        status: Restrict to one status.
    """
    since = lookback_start(lookback_days)
    query = db.query(LedgerTransaction).filter(
        LedgerTransaction.tier_kind == tier.kind,
        LedgerTransaction.tier_id == tier.id,
        LedgerTransaction.occurred_at >= since,
    )
    if fiscal_year:
        query = query.filter(LedgerTransaction.fiscal_year == fiscal_year)
    if transaction_type:
        query = query.filter(LedgerTransaction.transaction_type == transaction_type)
    if status:
        query = query.filter(LedgerTransaction.status == status)

    total = query.count()
    rows = (
        query.order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())
        .offset(pagination.offset)
        .limit(pagination.page_size)
        .all()
    )

    logger.debug(
        "list_transactions: %s since=%s page=%d total=%d",
        tier.label, since.date(), pagination.page, total,
    )
    return TransactionPage(
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        since=since,
        items=[TransactionResponse.model_validate(r) for r in rows],
    )


def get_wallet(db: Session, tier: TierRef, fiscal_year: int) -> WalletResponse:
    """Balance summary, recent transactions and pending requests of a tier.

    A tier that was never funded gets a zero balance rather than a 404,
    so the wallet screen always renders.
    """
    budget = ledger_store.find_balance(db, tier.kind, tier.id, fiscal_year)
    balance = (
        build_balance_response(budget)
        if budget is not None
        else empty_balance_response(tier, fiscal_year)
    )

    transactions = (
        db.query(LedgerTransaction)
        .filter(
            LedgerTransaction.tier_kind == tier.kind,
            LedgerTransaction.tier_id == tier.id,
            LedgerTransaction.fiscal_year == fiscal_year,
        )
        .order_by(LedgerTransaction.occurred_at.desc(), LedgerTransaction.id.desc())
        .limit(WALLET_ACTIVITY_LIMIT)
        .all()
    )
    pending_requests = (
        db.query(BudgetRequest)
        .filter(
            BudgetRequest.requester_kind == tier.kind,
            BudgetRequest.requester_id == tier.id,
            BudgetRequest.fiscal_year == fiscal_year,
            BudgetRequest.status == REQUEST_PENDING,
        )
        .order_by(BudgetRequest.created_at.desc())
        .all()
    )

    activity = [
        WalletItem(
            source="transaction",
            id=t.id,
            item_type=t.transaction_type,
            amount=to_money(t.amount),
            description=t.description,
            status=t.status,
            occurred_at=t.occurred_at,
        )
        for t in transactions
    ]
    activity.extend(
        WalletItem(
            source="request",
            id=r.id,
            item_type="budget_request",
            amount=to_money(r.amount),
            description=r.reason,
            status=r.status,
            occurred_at=r.created_at,
        )
        for r in pending_requests
    )
    activity.sort(key=lambda item: item.occurred_at, reverse=True)

    return WalletResponse(
        balance=balance,
        pending_requests_total=sum((to_money(r.amount) for r in pending_requests), ZERO),
        activity=activity[:WALLET_ACTIVITY_LIMIT],
    )


# ---------------------------------------------------------------------------
# Expense entry
# ---------------------------------------------------------------------------


def _get_transaction(db: Session, transaction_id: int) -> LedgerTransaction:
    transaction = (
        db.query(LedgerTransaction)
        .populate_existing()
        .filter(LedgerTransaction.id == transaction_id)
        .first()
    )
    if transaction is None:
        raise NotFoundError(f"Transaction {transaction_id} does not exist.")
    return transaction


def _expense_result(
    db: Session, transaction: LedgerTransaction, replayed: bool = False
) -> ExpenseResult:
    budget = ledger_store.get_balance(
        db, transaction.tier_kind, transaction.tier_id, transaction.fiscal_year
    )
    return ExpenseResult(
        transaction=TransactionResponse.model_validate(transaction),
        balance=build_balance_response(budget),
        replayed=replayed,
    )


def record_expense(
    db: Session,
    tier: TierRef,
    fiscal_year: int,
    amount: Any,
    description: str,
    category: str | None = None,
    expense_date: datetime | None = None,
    actor_id: str | None = None,
    pending: bool = False,
    idempotency_key: str | None = None,
) -> ExpenseResult:
    """Debit a tier's remaining balance for money spent.

    A pending expense reserves the funds immediately; completing it later
    does not move money again, cancelling it gives the funds back.

    Raises:
        InvalidAmountError: If ``amount`` is not a positive decimal.
        NotFoundError: If the tier has no budget for the year.
        InsufficientFundsError: If the remaining balance is too low.
        IdempotencyKeyReusedError: If the key recorded something else.
        InvalidIdempotencyKeyError: If the key uses a reserved prefix.
        LedgerBusyError / LedgerTimeoutError.
    """
    amount = parse_amount(amount)
    key = check_client_key(idempotency_key) or new_idempotency_key("expense")
    occurred_at = expense_date or ledger_store.utcnow()

    def work(attempt: int) -> ExpenseResult:
        existing = ledger_store.find_transactions_by_key(db, key).get(LEG_SINGLE)
        if existing is not None:
            if (
                existing.transaction_type != TX_EXPENSE
                or (existing.tier_kind, existing.tier_id) != (tier.kind, tier.id)
                or to_money(existing.amount) != -amount
            ):
                raise IdempotencyKeyReusedError(key)
            return _expense_result(db, existing, replayed=True)

        budget = ledger_store.get_balance(db, tier.kind, tier.id, fiscal_year)
        ledger_store.compare_and_adjust(
            db, tier.kind, tier.id, fiscal_year,
            expected_version=budget.version,
            delta_remaining=-amount,
        )
        transaction_id = ledger_store.append_transaction(db, {
            "tier_kind": tier.kind,
            "tier_id": tier.id,
            "fiscal_year": fiscal_year,
            "transaction_type": TX_EXPENSE,
            "amount": -amount,
            "description": description,
            "category": category,
            "status": TX_PENDING if pending else TX_COMPLETED,
            "idempotency_key": key,
            "leg": LEG_SINGLE,
            "actor_id": actor_id,
            "occurred_at": occurred_at,
        })
        return _expense_result(db, _get_transaction(db, transaction_id))

    result = run_atomic(
        db,
        "record_expense",
        work,
        probe=lambda: ledger_store.find_balance(db, tier.kind, tier.id, fiscal_year),
    )
    if not result.replayed:
        logger.info(
            "record_expense: %s fy=%d amount=%s status=%s key=%s",
            tier.label, fiscal_year, amount, result.transaction.status, key,
        )
    return result


def _transition(
    db: Session, transaction_id: int, new_status: str, restore_funds: bool
) -> ExpenseResult:
    def work(attempt: int) -> ExpenseResult:
        transaction = _get_transaction(db, transaction_id)
        if transaction.transaction_type != TX_EXPENSE:
            raise InvalidTransitionError(
                f"Only expenses change status; transaction {transaction_id} is "
                f"a {transaction.transaction_type}."
            )
        if new_status not in TX_TRANSITIONS.get(transaction.status, frozenset()):
            raise InvalidTransitionError(
                f"Transaction {transaction_id} cannot go from "
                f"{transaction.status} to {new_status}."
            )

        moved = (
            db.query(LedgerTransaction)
            .filter(
                LedgerTransaction.id == transaction_id,
                LedgerTransaction.status == transaction.status,
            )
            .update({LedgerTransaction.status: new_status}, synchronize_session=False)
        )
        if moved != 1:
            raise InvalidTransitionError(
                f"Transaction {transaction_id} changed status concurrently."
            )

        if restore_funds:
            budget = ledger_store.get_balance(
                db, transaction.tier_kind, transaction.tier_id, transaction.fiscal_year
            )
            ledger_store.compare_and_adjust(
                db, transaction.tier_kind, transaction.tier_id, transaction.fiscal_year,
                expected_version=budget.version,
                delta_remaining=abs(to_money(transaction.amount)),
            )
        return _expense_result(db, _get_transaction(db, transaction_id))

    result = run_atomic(db, f"{new_status}_transaction", work)
    logger.info("transaction %d -> %s", transaction_id, new_status)
    return result


def complete_transaction(db: Session, transaction_id: int) -> ExpenseResult:
    """Settle a pending expense; the funds were already reserved.

    Raises:
        NotFoundError: If the transaction does not exist.
        InvalidTransitionError: If it is not a pending expense.
    """
    return _transition(db, transaction_id, TX_COMPLETED, restore_funds=False)


def cancel_transaction(db: Session, transaction_id: int) -> ExpenseResult:
    """Cancel a pending expense and return its amount to the tier.

    Raises:
        NotFoundError: If the transaction does not exist.
        InvalidTransitionError: If it is not a pending expense.
    """
    return _transition(db, transaction_id, TX_CANCELLED, restore_funds=True)


def refund_key(transaction_id: int) -> str:
    return f"{REFUND_KEY_PREFIX}{transaction_id}"


def refund_expense(
    db: Session,
    transaction_id: int,
    description: str | None = None,
    actor_id: str | None = None,
) -> ExpenseResult:
    """Credit a completed expense back to its tier, at most once.

    The refund is a new ``refund`` row keyed ``refund:<id>`` that points to
    the expense through ``related_transaction_id``; the expense row itself
    is not modified.  Repeating the call returns the first refund.

    Raises:
        NotFoundError: If the transaction does not exist.
        InvalidTransitionError: If it is not a completed expense.
    """
    key = refund_key(transaction_id)

    def work(attempt: int) -> ExpenseResult:
        expense = _get_transaction(db, transaction_id)
        if expense.transaction_type != TX_EXPENSE or expense.status != TX_COMPLETED:
            raise InvalidTransitionError(
                f"Only completed expenses can be refunded; transaction "
                f"{transaction_id} is a {expense.status} {expense.transaction_type}."
            )

        existing = ledger_store.find_transactions_by_key(db, key).get(LEG_SINGLE)
        if existing is not None:
            return _expense_result(db, existing, replayed=True)

        amount = abs(to_money(expense.amount))
        budget = ledger_store.get_balance(
            db, expense.tier_kind, expense.tier_id, expense.fiscal_year
        )
        ledger_store.compare_and_adjust(
            db, expense.tier_kind, expense.tier_id, expense.fiscal_year,
            expected_version=budget.version,
            delta_remaining=amount,
        )
        refund_id = ledger_store.append_transaction(db, {
            "tier_kind": expense.tier_kind,
            "tier_id": expense.tier_id,
            "fiscal_year": expense.fiscal_year,
            "transaction_type": TX_REFUND,
            "amount": amount,
            "description": description or f"Refund of {expense.description or 'expense'}",
            "category": expense.category,
            "status": TX_COMPLETED,
            "idempotency_key": key,
            "leg": LEG_SINGLE,
            "related_transaction_id": expense.id,
            "actor_id": actor_id,
        })
        return _expense_result(db, _get_transaction(db, refund_id))

    result = run_atomic(db, "refund_expense", work)
    if not result.replayed:
        logger.info(
            "refund_expense: transaction %d refunded %s", transaction_id, result.transaction.amount
        )
    return result


def expense_datetime(value: Any) -> datetime | None:
    """Midnight of an expense ``date``; ``None`` passes through."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)
