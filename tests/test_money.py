"""Tests for amount parsing at the ledger boundary."""

from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from budget_ledger.errors import InvalidAmountError
from budget_ledger.schemas.ledger import AllocationCreate
from budget_ledger.utils.money import parse_amount, to_money, utilization_pct


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("40000", Decimal("40000.00")),
            ("40,000.50", Decimal("40000.50")),
            ("  12.3 ", Decimal("12.30")),
            (15, Decimal("15.00")),
            (Decimal("0.01"), Decimal("0.01")),
            ("10.500", Decimal("10.50")),
        ],
    )
    def test_accepts_decimal_strings_and_integers(self, raw, expected) -> None:
        assert parse_amount(raw) == expected
        assert parse_amount(raw).as_tuple().exponent == -2

    @pytest.mark.parametrize("raw", ["0", "-5", "0.00", 0, -1])
    def test_rejects_non_positive(self, raw) -> None:
        with pytest.raises(InvalidAmountError, match="greater than zero"):
            parse_amount(raw)

    @pytest.mark.parametrize("raw", ["abc", "", "1e", "12.3.4"])
    def test_rejects_malformed(self, raw) -> None:
        with pytest.raises(InvalidAmountError):
            parse_amount(raw)

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-inf"])
    def test_rejects_non_finite(self, raw) -> None:
        with pytest.raises(InvalidAmountError, match="finite"):
            parse_amount(raw)

    def test_rejects_more_than_two_decimals(self) -> None:
        with pytest.raises(InvalidAmountError, match="decimal places"):
            parse_amount("10.005")

    def test_rejects_amount_beyond_column_precision(self) -> None:
        with pytest.raises(InvalidAmountError, match="precision"):
            parse_amount("10000000000000")

    def test_rejects_float_and_bool(self) -> None:
        with pytest.raises(InvalidAmountError):
            parse_amount(10.5)
        with pytest.raises(InvalidAmountError):
            parse_amount(True)

    def test_invalid_amount_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_amount("-1")


class TestHelpers:
    def test_to_money_handles_none_and_quantizes(self) -> None:
        assert to_money(None) == Decimal("0.00")
        assert to_money(Decimal("3.1")) == Decimal("3.10")

    def test_utilization_pct(self) -> None:
        assert utilization_pct(Decimal("25"), Decimal("100")) == 25.0
        assert utilization_pct(Decimal("0"), Decimal("0")) == 0.0


class TestSchemaBoundary:
    def _body(self, amount):
        return {
            "parent": {"kind": "region", "id": "region-1"},
            "child": {"kind": "organization", "id": "org-a"},
            "fiscal_year": 2026,
            "amount": amount,
        }

    def test_json_number_is_parsed_from_its_literal(self) -> None:
        body = AllocationCreate.model_validate(self._body(0.1))
        assert body.amount == Decimal("0.10")

    def test_negative_amount_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            AllocationCreate.model_validate(self._body("-100"))
