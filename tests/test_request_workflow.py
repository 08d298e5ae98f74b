"""Tests for submitting and deciding budget requests."""

from __future__ import annotations

from decimal import Decimal

import pytest

from budget_ledger.errors import (
    InsufficientFundsError,
    InvalidAmountError,
    InvalidHierarchyError,
    InvalidIdempotencyKeyError,
    MembershipInvalidError,
    NotFoundError,
)
from budget_ledger.models.ledger_transaction import LedgerTransaction
from budget_ledger.schemas.budget_request import RequestFilterParams
from budget_ledger.schemas.common import PaginationParams, TierRef
from budget_ledger.services import (
    allocation_service,
    ledger_store,
    request_service,
    transaction_service,
)

FY = 2026
REGION = TierRef(kind="region", id="region-1")
ORG_A = TierRef(kind="organization", id="org-a")
FARMER_F = TierRef(kind="farmer", id="farmer-f")
FARMER_G = TierRef(kind="farmer", id="farmer-g")


def _submit(db, amount, requester=FARMER_F, target=ORG_A):
    return request_service.submit_request(
        db, requester, target.kind, target.id, FY, amount,
        reason="Fertilizer", actor_id="user-f",
    )


def _transaction_count(db) -> int:
    return db.query(LedgerTransaction).count()


class TestSubmit:
    def test_creates_pending_request_without_touching_balances(self, ledger) -> None:
        before = _transaction_count(ledger)
        request = _submit(ledger, "50000")

        assert request.status == "pending"
        assert request.amount == Decimal("50000.00")
        assert request.created_by == "user-f"
        assert _transaction_count(ledger) == before
        assert ledger_store.find_balance(ledger, "farmer", "farmer-f", FY) is None

    def test_rejects_non_positive_amount(self, ledger) -> None:
        with pytest.raises(InvalidAmountError):
            _submit(ledger, "0")

    def test_target_must_be_one_level_up(self, ledger) -> None:
        with pytest.raises(InvalidHierarchyError):
            _submit(ledger, "10", target=REGION)

    def test_requester_must_be_member_of_target(self, ledger) -> None:
        outsider = TierRef(kind="farmer", id="farmer-x")
        with pytest.raises(MembershipInvalidError):
            _submit(ledger, "10", requester=outsider)

    def test_region_requests_target_national_pool(self, ledger) -> None:
        request = request_service.submit_request(
            ledger, REGION, "national", None, FY, "5000", reason="Drought relief"
        )
        assert (request.target_kind, request.target_id) == ("national", "national")


class TestDecide:
    def test_approval_without_funds_leaves_request_pending(self, ledger) -> None:
        request = _submit(ledger, "50000")
        before = _transaction_count(ledger)

        with pytest.raises(InsufficientFundsError) as exc_info:
            request_service.decide_request(ledger, request.id, "approved", decider_id="org-admin")

        assert exc_info.value.available == Decimal("40000.00")
        assert exc_info.value.shortfall == Decimal("10000.00")
        stored = request_service.get_request(ledger, request.id)
        assert stored.status == "pending"
        assert stored.decided_at is None
        assert _transaction_count(ledger) == before

    def test_approval_moves_funds_with_two_linked_rows(self, ledger) -> None:
        request = _submit(ledger, "10000")
        result = request_service.decide_request(
            ledger, request.id, "approved", decider_id="org-admin", notes="ok"
        )

        assert result.already_decided is False
        assert result.request.status == "approved"
        assert result.request.decided_by == "org-admin"
        assert result.request.decision_notes == "ok"
        assert result.allocation.parent.remaining_balance == Decimal("30000.00")
        assert result.allocation.child.total_allocation == Decimal("10000.00")

        legs = ledger_store.find_transactions_by_key(ledger, f"request:{request.id}")
        assert set(legs) == {"debit", "credit"}
        assert legs["debit"].occurred_at == legs["credit"].occurred_at
        assert all(t.transaction_type == "request_settlement" for t in legs.values())
        assert all(t.request_id == request.id for t in legs.values())

    def test_deciding_twice_is_a_no_op(self, ledger) -> None:
        request = _submit(ledger, "10000")
        request_service.decide_request(ledger, request.id, "approved", decider_id="first")
        count = _transaction_count(ledger)

        again = request_service.decide_request(ledger, request.id, "rejected", decider_id="second")

        assert again.already_decided is True
        assert again.request.status == "approved"
        assert again.request.decided_by == "first"
        assert again.allocation is None
        assert _transaction_count(ledger) == count
        assert ledger_store.get_balance(ledger, "organization", "org-a", FY).remaining_balance == (
            Decimal("30000.00")
        )

    def test_rejection_records_settlement_without_balance_change(self, ledger) -> None:
        request = _submit(ledger, "10000")
        result = request_service.decide_request(
            ledger, request.id, "rejected", decider_id="org-admin", notes="Not this season"
        )

        assert result.request.status == "rejected"
        assert ledger_store.get_balance(ledger, "organization", "org-a", FY).remaining_balance == (
            Decimal("40000.00")
        )
        row = ledger.get(LedgerTransaction, result.settlement_transaction_id)
        assert row.transaction_type == "request_settlement"
        assert row.status == "rejected"
        assert row.idempotency_key == f"request:{request.id}"
        assert (row.tier_kind, row.tier_id) == ("farmer", "farmer-f")

    def test_decision_from_another_session_wins(self, ledger, session_factory) -> None:
        request = _submit(ledger, "10000")
        other = session_factory()
        try:
            request_service.decide_request(other, request.id, "rejected", decider_id="fast")
        finally:
            other.close()

        result = request_service.decide_request(ledger, request.id, "approved", decider_id="slow")
        assert result.already_decided is True
        assert result.request.status == "rejected"
        assert result.request.decided_by == "fast"

    def test_region_approval_funds_from_national_pool(self, ledger) -> None:
        request = request_service.submit_request(ledger, REGION, "national", None, FY, "5000")
        result = request_service.decide_request(ledger, request.id, "approved", decider_id="super")

        assert result.funding.tier.total_allocation == Decimal("105000.00")
        assert result.funding.tier.remaining_balance == Decimal("65000.00")
        legs = ledger_store.find_transactions_by_key(ledger, f"request:{request.id}")
        assert set(legs) == {"single"}

    def test_unknown_request(self, ledger) -> None:
        with pytest.raises(NotFoundError):
            request_service.decide_request(ledger, 999, "approved")

    def test_settlement_key_cannot_be_taken_by_callers(self, ledger) -> None:
        request = _submit(ledger, "10000")
        key = request_service.settlement_key(request.id)

        with pytest.raises(InvalidIdempotencyKeyError):
            allocation_service.allocate(ledger, ORG_A, FARMER_G, FY, "100", idempotency_key=key)
        with pytest.raises(InvalidIdempotencyKeyError):
            transaction_service.record_expense(
                ledger, ORG_A, FY, "100", "Fuel", idempotency_key=key
            )
        with pytest.raises(InvalidIdempotencyKeyError):
            allocation_service.fund_tier(ledger, REGION, FY, "100", idempotency_key="refund:1")

        result = request_service.decide_request(ledger, request.id, "approved")
        assert result.request.status == "approved"
        assert set(ledger_store.find_transactions_by_key(ledger, key)) == {"debit", "credit"}


class TestListRequests:
    def test_filters_and_orders_newest_first(self, ledger) -> None:
        first = _submit(ledger, "100")
        second = _submit(ledger, "200", requester=FARMER_G)
        request_service.decide_request(ledger, first.id, "rejected")

        pending = request_service.list_requests(
            ledger, RequestFilterParams(status="pending"), PaginationParams()
        )
        assert [r.id for r in pending.items] == [second.id]

        everything = request_service.list_requests(
            ledger,
            RequestFilterParams(target_kind="organization", target_id="org-a"),
            PaginationParams(),
        )
        assert everything.total == 2
        assert [r.id for r in everything.items] == [second.id, first.id]

    def test_pagination(self, ledger) -> None:
        for amount in ("1", "2", "3"):
            _submit(ledger, amount)
        page = request_service.list_requests(
            ledger, RequestFilterParams(), PaginationParams(page=2, page_size=2)
        )
        assert page.total == 3
        assert len(page.items) == 1
