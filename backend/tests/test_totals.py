"""
Totals computation tests.

Verifies:
- Per-line and aggregate arithmetic in integer cents
- Half-up rounding happens once, at conversion
- Line-level validation messages
- Ceilings keep every amount inside an INTEGER column
"""

import pytest

from invoicedesk.totals import LineItem, compute_totals, to_cents, cents_to_amount
from invoicedesk.validation import MAX_INVOICE_CENTS, ValidationError


class TestToCents:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (10, 1000),
            (10.5, 1050),
            ("19.99", 1999),
            (0.125, 13),
            ("0.005", 1),
            (0.1 + 0.2, 30),
            (0, 0),
        ],
    )
    def test_converts_and_rounds_half_up(self, value, expected):
        assert to_cents(value, "amount") == expected

    @pytest.mark.parametrize("value", [None, True, "abc", "", [], {}])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError, match="amount must be a number"):
            to_cents(value, "amount")

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), "Infinity", "NaN"])
    def test_rejects_non_finite(self, value):
        with pytest.raises(ValidationError, match="finite"):
            to_cents(value, "amount")

    @pytest.mark.parametrize("value", [1e30, "1e30", 10 ** 40, "99999999999999999999999999999999.99"])
    def test_huge_amounts_rejected(self, value):
        with pytest.raises(ValidationError, match="^amount cannot exceed 21,474,836.47$"):
            to_cents(value, "amount")

    @pytest.mark.parametrize("value", [1e30, "1e999999", 10 ** 40])
    def test_huge_amounts_clamped(self, value):
        assert to_cents(value, "amount", clamp=True) == MAX_INVOICE_CENTS

    def test_huge_negative_amount_rejected_even_when_clamping(self):
        with pytest.raises(ValidationError, match="out of range"):
            to_cents(-1e30, "amount", clamp=True)

    def test_maximum_is_inclusive(self):
        assert to_cents("21474836.47", "amount") == MAX_INVOICE_CENTS
        assert to_cents(99.99, "price", maximum=9999) == 9999
        with pytest.raises(ValidationError, match="^price cannot exceed 99.99$"):
            to_cents(100, "price", maximum=9999)

    def test_cents_to_amount(self):
        assert cents_to_amount(1999) == 19.99
        assert cents_to_amount(0) == 0
        assert cents_to_amount(None) is None


class TestComputeTotals:

    def test_single_line_without_discount(self):
        totals = compute_totals([LineItem(product_name="Cement", quantity=3, unit_price_cents=1000)])

        assert totals.total_amount_cents == 3000
        assert totals.total_discount_cents == 0
        assert totals.final_amount_cents == 3000
        assert totals.total_items == 3

    def test_discounted_line(self):
        totals = compute_totals([
            LineItem(product_name="Paint", quantity=2, unit_price_cents=5000, discount_cents=2000),
        ])

        assert totals.total_amount_cents == 10000
        assert totals.total_discount_cents == 2000
        assert totals.final_amount_cents == 8000

    def test_profit_uses_cost_per_unit(self):
        totals = compute_totals([
            LineItem(product_name="Paint", quantity=2, unit_price_cents=5000, discount_cents=2000, cost_price_cents=3000),
            LineItem(product_name="Brush", quantity=1, unit_price_cents=500, cost_price_cents=200),
        ])

        # (8000 - 6000) + (500 - 200)
        assert totals.total_profit_cents == 2300
        assert totals.total_items == 3

    def test_final_equals_total_minus_discount(self):
        items = [
            LineItem(product_name=f"P{i}", quantity=i + 1, unit_price_cents=333 * (i + 1), discount_cents=i * 7)
            for i in range(10)
        ]
        totals = compute_totals(items)

        assert totals.final_amount_cents == totals.total_amount_cents - totals.total_discount_cents
        assert totals.total_amount_cents == sum(i.unit_price_cents * i.quantity for i in items)

    def test_profit_may_be_negative(self):
        totals = compute_totals([LineItem(product_name="Loss", quantity=1, unit_price_cents=100, cost_price_cents=150)])
        assert totals.total_profit_cents == -50

    def test_to_dict_renders_currency(self):
        totals = compute_totals([LineItem(product_name="Nails", quantity=3, unit_price_cents=333)])
        assert totals.to_dict() == {
            "total_amount": 9.99,
            "total_discount": 0.0,
            "final_amount": 9.99,
            "total_profit": 9.99,
            "total_items": 3,
        }

    def test_empty_items_rejected(self):
        with pytest.raises(ValidationError, match="Invoice must include at least one item"):
            compute_totals([])

    @pytest.mark.parametrize(
        "item,message",
        [
            (LineItem(product_name="", quantity=1, unit_price_cents=100), "Item 1: product_name is required"),
            (LineItem(product_name="X", quantity=0, unit_price_cents=100), "Item 1: quantity must be at least 1"),
            (LineItem(product_name="X", quantity=1, unit_price_cents=-1), "Item 1: unit_price must be >= 0"),
            (LineItem(product_name="X", quantity=1, unit_price_cents=100, discount_cents=-1), "Item 1: discount must be >= 0"),
            (LineItem(product_name="X", quantity=1, unit_price_cents=100, cost_price_cents=-1), "Item 1: cost_price must be >= 0"),
            (LineItem(product_name="X", quantity=2, unit_price_cents=100, discount_cents=201), "Item 1: discount cannot exceed the line total"),
            (LineItem(product_name="X", quantity=1_000_001, unit_price_cents=1), "Item 1: quantity cannot exceed 1000000"),
            (LineItem(product_name="X", quantity=1, unit_price_cents=1_000_000_000), "Item 1: unit_price cannot exceed 9,999,999.99"),
            (LineItem(product_name="X", quantity=1, unit_price_cents=1, cost_price_cents=1_000_000_000), "Item 1: cost_price cannot exceed 9,999,999.99"),
            (LineItem(product_name="X", quantity=3, unit_price_cents=999_999_999), "Item 1: line total cannot exceed 21,474,836.47"),
            (LineItem(product_name="X", quantity=3, unit_price_cents=1, cost_price_cents=999_999_999), "Item 1: line cost cannot exceed 21,474,836.47"),
        ],
    )
    def test_invalid_line_rejected(self, item, message):
        with pytest.raises(ValidationError) as exc:
            compute_totals([item])
        assert str(exc.value) == message

    def test_error_names_the_failing_line(self):
        items = [
            LineItem(product_name="Ok", quantity=1, unit_price_cents=100),
            LineItem(product_name="Bad", quantity=1, unit_price_cents=100, discount_cents=500),
        ]
        with pytest.raises(ValidationError, match="^Item 2:"):
            compute_totals(items)

    def test_discount_equal_to_line_total_allowed(self):
        totals = compute_totals([LineItem(product_name="Free", quantity=2, unit_price_cents=100, discount_cents=200)])
        assert totals.final_amount_cents == 0

    def test_invoice_total_ceiling(self):
        items = [LineItem(product_name=f"P{i}", quantity=1, unit_price_cents=999_999_999) for i in range(3)]
        with pytest.raises(ValidationError, match="^Invoice total cannot exceed 21,474,836.47$"):
            compute_totals(items)

    def test_invoice_cost_ceiling(self):
        items = [
            LineItem(product_name=f"P{i}", quantity=1, unit_price_cents=1, cost_price_cents=999_999_999)
            for i in range(3)
        ]
        with pytest.raises(ValidationError, match="^Invoice cost cannot exceed 21,474,836.47$"):
            compute_totals(items)

    def test_largest_invoice_fits(self):
        items = [
            LineItem(product_name="A", quantity=2, unit_price_cents=999_999_999, cost_price_cents=999_999_999),
            LineItem(product_name="B", quantity=1, unit_price_cents=147_483_649),
        ]
        totals = compute_totals(items)

        assert totals.total_amount_cents == MAX_INVOICE_CENTS
        assert totals.total_profit_cents == 147_483_649
