"""Tests for expense entry, the expense lifecycle, history and the wallet."""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from budget_ledger.errors import (
    IdempotencyKeyReusedError,
    InsufficientFundsError,
    InvalidIdempotencyKeyError,
    InvalidTransitionError,
    NotFoundError,
)
from budget_ledger.schemas.common import PaginationParams, TierRef
from budget_ledger.services import (
    allocation_service,
    ledger_store,
    request_service,
    transaction_service,
)

FY = 2026
ORG_A = TierRef(kind="organization", id="org-a")
FARMER_F = TierRef(kind="farmer", id="farmer-f")
FARMER_G = TierRef(kind="farmer", id="farmer-g")


@pytest.fixture
def farmer(ledger):
    """farmer-f holding 10,000 allocated by org-a."""
    allocation_service.allocate(ledger, ORG_A, FARMER_F, FY, "10000", idempotency_key="farmer:f")
    return ledger


def _expense(db, amount="250", **kwargs):
    kwargs.setdefault("description", "Seed bags")
    kwargs.setdefault("category", "Seeds")
    return transaction_service.record_expense(db, FARMER_F, FY, amount, **kwargs)


def _remaining(db, tier=FARMER_F) -> Decimal:
    return ledger_store.get_balance(db, tier.kind, tier.id, FY).remaining_balance


class TestRecordExpense:
    def test_completed_expense_debits_remaining_only(self, farmer) -> None:
        result = _expense(farmer, "250", actor_id="user-f")

        assert result.transaction.transaction_type == "expense"
        assert result.transaction.status == "completed"
        assert result.transaction.amount == Decimal("-250.00")
        assert result.transaction.category == "Seeds"
        assert result.balance.remaining_balance == Decimal("9750.00")
        assert result.balance.total_allocation == Decimal("10000.00")
        assert result.balance.utilized_amount == Decimal("250.00")

    def test_pending_expense_reserves_funds(self, farmer) -> None:
        result = _expense(farmer, "1000", pending=True)
        assert result.transaction.status == "pending"
        assert _remaining(farmer) == Decimal("9000.00")

    def test_overspending_is_refused(self, farmer) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            _expense(farmer, "10000.01")
        assert exc_info.value.shortfall == Decimal("0.01")
        assert _remaining(farmer) == Decimal("10000.00")

    def test_unfunded_tier(self, ledger) -> None:
        with pytest.raises(NotFoundError):
            transaction_service.record_expense(ledger, FARMER_G, FY, "1", "Tools")

    def test_replay_with_same_key(self, farmer) -> None:
        first = _expense(farmer, "100", idempotency_key="exp-1")
        second = _expense(farmer, "100", idempotency_key="exp-1")
        assert second.replayed is True
        assert second.transaction.id == first.transaction.id
        assert _remaining(farmer) == Decimal("9900.00")

    def test_key_reused_with_other_amount(self, farmer) -> None:
        _expense(farmer, "100", idempotency_key="exp-1")
        with pytest.raises(IdempotencyKeyReusedError):
            _expense(farmer, "200", idempotency_key="exp-1")

    def test_expense_date_sets_occurred_at(self, farmer) -> None:
        when = transaction_service.expense_datetime(date(2026, 3, 14))
        result = _expense(farmer, "10", expense_date=when)
        assert result.transaction.occurred_at.date() == date(2026, 3, 14)

    def test_cents_spend_down_reaches_zero(self, ledger) -> None:
        allocation_service.allocate(ledger, ORG_A, FARMER_G, FY, "0.30")
        for _ in range(3):
            transaction_service.record_expense(ledger, FARMER_G, FY, "0.10", "Twine")
        assert _remaining(ledger, FARMER_G) == Decimal("0.00")

        with pytest.raises(InsufficientFundsError) as exc_info:
            transaction_service.record_expense(ledger, FARMER_G, FY, "0.01", "Twine")
        assert exc_info.value.available == Decimal("0.00")
        assert exc_info.value.shortfall == Decimal("0.01")

    def test_reserved_key_prefixes_are_refused(self, farmer) -> None:
        for key in ("request:1", "refund:1"):
            with pytest.raises(InvalidIdempotencyKeyError):
                _expense(farmer, "10", idempotency_key=key)
        assert _remaining(farmer) == Decimal("10000.00")


class TestLifecycle:
    def test_complete_keeps_reserved_funds(self, farmer) -> None:
        pending = _expense(farmer, "1000", pending=True)
        result = transaction_service.complete_transaction(farmer, pending.transaction.id)
        assert result.transaction.status == "completed"
        assert _remaining(farmer) == Decimal("9000.00")

    def test_cancel_restores_funds(self, farmer) -> None:
        pending = _expense(farmer, "1000", pending=True)
        result = transaction_service.cancel_transaction(farmer, pending.transaction.id)
        assert result.transaction.status == "cancelled"
        assert result.balance.remaining_balance == Decimal("10000.00")

    def test_terminal_states_do_not_move(self, farmer) -> None:
        done = _expense(farmer, "10")
        with pytest.raises(InvalidTransitionError):
            transaction_service.cancel_transaction(farmer, done.transaction.id)
        with pytest.raises(InvalidTransitionError):
            transaction_service.complete_transaction(farmer, done.transaction.id)
        assert _remaining(farmer) == Decimal("9990.00")

    def test_allocation_rows_are_immutable(self, farmer) -> None:
        legs = ledger_store.find_transactions_by_key(farmer, "farmer:f")
        with pytest.raises(InvalidTransitionError):
            transaction_service.cancel_transaction(farmer, legs["credit"].id)

    def test_unknown_transaction(self, farmer) -> None:
        with pytest.raises(NotFoundError):
            transaction_service.complete_transaction(farmer, 4242)


class TestRefund:
    def test_refund_credits_once(self, farmer) -> None:
        expense = _expense(farmer, "300")
        refund = transaction_service.refund_expense(farmer, expense.transaction.id)

        assert refund.transaction.transaction_type == "refund"
        assert refund.transaction.amount == Decimal("300.00")
        assert refund.transaction.related_transaction_id == expense.transaction.id
        assert refund.transaction.category == "Seeds"
        assert refund.balance.remaining_balance == Decimal("10000.00")

        again = transaction_service.refund_expense(farmer, expense.transaction.id)
        assert again.replayed is True
        assert again.transaction.id == refund.transaction.id
        assert _remaining(farmer) == Decimal("10000.00")

    def test_pending_expense_cannot_be_refunded(self, farmer) -> None:
        pending = _expense(farmer, "300", pending=True)
        with pytest.raises(InvalidTransitionError):
            transaction_service.refund_expense(farmer, pending.transaction.id)


class TestHistory:
    def test_newest_first_with_filters(self, farmer) -> None:
        first = _expense(farmer, "1")
        second = _expense(farmer, "2", pending=True)

        page = transaction_service.list_transactions(
            farmer, FARMER_F, PaginationParams(), fiscal_year=FY
        )
        assert page.total == 3
        assert [t.id for t in page.items][:2] == [second.transaction.id, first.transaction.id]

        pending = transaction_service.list_transactions(
            farmer, FARMER_F, PaginationParams(), status="pending"
        )
        assert [t.id for t in pending.items] == [second.transaction.id]

        expenses = transaction_service.list_transactions(
            farmer, FARMER_F, PaginationParams(), transaction_type="expense"
        )
        assert expenses.total == 2

    def test_lookback_window_hides_old_rows(self, farmer) -> None:
        old = ledger_store.utcnow() - timedelta(days=120)
        _expense(farmer, "5", expense_date=old)

        default = transaction_service.list_transactions(farmer, FARMER_F, PaginationParams())
        assert default.total == 1

        wide = transaction_service.list_transactions(
            farmer, FARMER_F, PaginationParams(), lookback_days=200
        )
        assert wide.total == 2

    def test_lookback_is_capped(self) -> None:
        since = transaction_service.lookback_start(10_000)
        assert ledger_store.utcnow() - since < timedelta(days=367)


class TestWallet:
    def test_unfunded_tier_shows_zero_card(self, ledger) -> None:
        wallet = transaction_service.get_wallet(ledger, FARMER_G, FY)
        assert wallet.balance.remaining_balance == Decimal("0.00")
        assert wallet.balance.version == 0
        assert wallet.activity == []

    def test_merges_transactions_and_pending_requests(self, farmer) -> None:
        _expense(farmer, "100")
        request = request_service.submit_request(
            farmer, FARMER_F, "organization", "org-a", FY, "700", reason="Irrigation"
        )

        wallet = transaction_service.get_wallet(farmer, FARMER_F, FY)
        assert wallet.balance.remaining_balance == Decimal("9900.00")
        assert wallet.pending_requests_total == Decimal("700.00")
        sources = {(item.source, item.item_type) for item in wallet.activity}
        assert ("request", "budget_request") in sources
        assert ("transaction", "expense") in sources
        assert ("transaction", "allocation") in sources
        assert any(item.id == request.id for item in wallet.activity if item.source == "request")
