"""Unit tests for totals computation."""

from decimal import Decimal

from invoicing.documents.schema import DocumentItem
from invoicing.documents.totals import compute_totals, line_total, round_money, to_cents


def _item(quantity: float, unit_price: float) -> DocumentItem:
    return DocumentItem(title="Line", quantity=quantity, unit_price=unit_price)


def test_compute_totals_worked_example() -> None:
    """One 2500 line and two 150 lines at 8.5% tax."""
    totals = compute_totals([_item(1, 2500), _item(2, 150)], 0.085)

    assert totals.subtotal == Decimal("2800")
    assert totals.tax == Decimal("238.00")
    assert totals.total == Decimal("3038.00")
    assert totals.subtotal_cents == 280000
    assert totals.tax_cents == 23800
    assert totals.total_cents == 303800


def test_compute_totals_no_items() -> None:
    """Empty item list yields zero totals."""
    totals = compute_totals([], 0.2)

    assert totals.subtotal == Decimal("0")
    assert totals.tax == Decimal("0.00")
    assert totals.total_cents == 0


def test_compute_totals_zero_tax() -> None:
    """A zero rate gives a total equal to the subtotal."""
    totals = compute_totals([_item(3, 19.99)], 0)

    assert totals.subtotal == Decimal("59.97")
    assert totals.tax_cents == 0
    assert totals.total_cents == 5997


def test_tax_rounds_half_up() -> None:
    """Half-cent tax amounts round away from zero, not to even."""
    # 0.50 * 0.05 = 0.025 -> 0.03
    totals = compute_totals([_item(1, 0.5)], 0.05)

    assert totals.tax == Decimal("0.03")


def test_fractional_quantity_line_total() -> None:
    """Fractional quantities multiply without float noise."""
    assert line_total(_item(1.5, 0.1)) == Decimal("0.15")


def test_round_money_and_cents() -> None:
    """Rounding helpers agree on half-up behaviour."""
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("2.344")) == Decimal("2.34")
    assert to_cents(Decimal("10.005")) == 1001
    assert to_cents(Decimal("0")) == 0
