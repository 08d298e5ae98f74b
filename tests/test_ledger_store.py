"""Tests for the balance store primitives."""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from budget_ledger.errors import (
    BalanceBoundsError,
    InsufficientFundsError,
    MembershipInvalidError,
    NotFoundError,
    VersionConflictError,
)
from budget_ledger.models.tier_budget import TierBudget
from budget_ledger.services import ledger_store

FY = 2026


def _region(db, remaining="100.00", total="100.00") -> TierBudget:
    budget = TierBudget(
        tier_kind="region",
        tier_id="r1",
        fiscal_year=FY,
        total_allocation=Decimal(total),
        remaining_balance=Decimal(remaining),
        version=0,
    )
    db.add(budget)
    db.commit()
    return budget


class TestGetBalance:
    def test_missing_row_raises_not_found(self, db) -> None:
        with pytest.raises(NotFoundError, match="region:r1"):
            ledger_store.get_balance(db, "region", "r1", FY)

    def test_find_balance_returns_none(self, db) -> None:
        assert ledger_store.find_balance(db, "region", "r1", FY) is None


class TestEnsureBalance:
    def test_creates_zero_row_scoped_to_parent(self, db) -> None:
        budget = ledger_store.ensure_balance(db, "farmer", "f1", FY, "organization", "o1")
        assert budget.total_allocation == 0
        assert budget.remaining_balance == 0
        assert budget.version == 0
        assert (budget.parent_kind, budget.parent_id) == ("organization", "o1")

    def test_second_call_returns_same_row(self, db) -> None:
        first = ledger_store.ensure_balance(db, "farmer", "f1", FY, "organization", "o1")
        db.commit()
        second = ledger_store.ensure_balance(db, "farmer", "f1", FY, "organization", "o1")
        assert first.id == second.id

    def test_other_parent_is_rejected(self, db) -> None:
        ledger_store.ensure_balance(db, "farmer", "f1", FY, "organization", "o1")
        db.commit()
        with pytest.raises(MembershipInvalidError):
            ledger_store.ensure_balance(db, "farmer", "f1", FY, "organization", "o2")


class TestCompareAndAdjust:
    def test_applies_deltas_and_bumps_version(self, db) -> None:
        _region(db)
        after = ledger_store.compare_and_adjust(
            db, "region", "r1", FY, expected_version=0, delta_remaining=Decimal("-40.00")
        )
        db.commit()
        assert after.remaining_balance == Decimal("60.00")
        assert after.total_allocation == Decimal("100.00")
        assert after.version == 1

    def test_stale_version_raises_conflict_without_writing(self, db) -> None:
        _region(db)
        ledger_store.compare_and_adjust(
            db, "region", "r1", FY, expected_version=0, delta_remaining=Decimal("-10.00")
        )
        db.commit()

        with pytest.raises(VersionConflictError) as exc_info:
            ledger_store.compare_and_adjust(
                db, "region", "r1", FY, expected_version=0, delta_remaining=Decimal("-10.00")
            )
        assert exc_info.value.actual_version == 1
        db.rollback()
        assert ledger_store.get_balance(db, "region", "r1", FY).remaining_balance == Decimal("90.00")

    def test_overdraft_raises_insufficient_funds_with_available(self, db) -> None:
        _region(db, remaining="30.00")
        with pytest.raises(InsufficientFundsError) as exc_info:
            ledger_store.compare_and_adjust(
                db, "region", "r1", FY, expected_version=0, delta_remaining=Decimal("-50.00")
            )
        err = exc_info.value
        assert err.available == Decimal("30.00")
        assert err.requested == Decimal("50.00")
        assert err.shortfall == Decimal("20.00")
        assert err.to_dict()["shortfall"] == "20.00"

    def test_remaining_cannot_exceed_total(self, db) -> None:
        _region(db)
        with pytest.raises(BalanceBoundsError) as exc_info:
            ledger_store.compare_and_adjust(
                db, "region", "r1", FY, expected_version=0, delta_remaining=Decimal("1.00")
            )
        assert exc_info.value.remaining == Decimal("101.00")
        assert exc_info.value.code == "BALANCE_BOUNDS"
        assert ledger_store.get_balance(db, "region", "r1", FY).version == 0

    def test_spends_down_to_exactly_zero_in_cents(self, db) -> None:
        _region(db, remaining="0.30", total="0.30")
        for version in range(3):
            after = ledger_store.compare_and_adjust(
                db, "region", "r1", FY, expected_version=version, delta_remaining=Decimal("-0.10")
            )
            db.commit()
        assert after.remaining_balance == Decimal("0.00")
        assert after.version == 3

        with pytest.raises(InsufficientFundsError) as exc_info:
            ledger_store.compare_and_adjust(
                db, "region", "r1", FY, expected_version=3, delta_remaining=Decimal("-0.01")
            )
        assert exc_info.value.available == Decimal("0.00")

    def test_check_constraint_blocks_direct_negative_write(self, db) -> None:
        budget = _region(db)
        budget.remaining_balance = Decimal("-1.00")
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()


class TestAppendTransaction:
    def _record(self, **overrides):
        record = {
            "tier_kind": "region",
            "tier_id": "r1",
            "fiscal_year": FY,
            "transaction_type": "allocation",
            "amount": Decimal("10.00"),
            "status": "completed",
            "idempotency_key": "k1",
            "leg": "single",
        }
        record.update(overrides)
        return record

    def test_replay_returns_existing_id(self, db) -> None:
        first = ledger_store.append_transaction(db, self._record())
        second = ledger_store.append_transaction(db, self._record(amount=Decimal("99.00")))
        db.commit()
        assert first == second
        assert set(ledger_store.find_transactions_by_key(db, "k1")) == {"single"}

    def test_same_key_different_leg_is_a_new_row(self, db) -> None:
        debit = ledger_store.append_transaction(db, self._record(leg="debit"))
        credit = ledger_store.append_transaction(db, self._record(leg="credit"))
        assert debit != credit
        assert set(ledger_store.find_transactions_by_key(db, "k1")) == {"debit", "credit"}
