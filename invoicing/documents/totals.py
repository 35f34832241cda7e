"""Money and totals computation for document line items.

All arithmetic is done in ``Decimal`` with ROUND_HALF_UP (half away from
zero) so that the stored cent values match what the rendered document shows.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from invoicing.documents.schema import DocumentItem

CENT = Decimal("0.01")


def to_decimal(value: float | int | str | Decimal) -> Decimal:
    """Convert a number to Decimal through its shortest string form.

    ``Decimal(0.085)`` carries binary noise; ``Decimal("0.085")`` does not.
    """
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    """Round to two decimal places, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(value: Decimal) -> int:
    """Convert a major-unit amount to integer minor units."""
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total(item: DocumentItem) -> Decimal:
    return to_decimal(item.quantity) * to_decimal(item.unit_price)


class DocumentTotals(BaseModel):
    """Computed totals for a document.

    Attributes:
        subtotal: Sum of quantity x unit price, unrounded
        tax: Subtotal x tax rate, rounded to cents
        total: Subtotal + tax
        tax_rate: Rate the tax was computed with (e.g. 0.085)
    """

    subtotal: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal

    @property
    def subtotal_cents(self) -> int:
        return to_cents(self.subtotal)

    @property
    def tax_cents(self) -> int:
        return to_cents(self.tax)

    @property
    def total_cents(self) -> int:
        return to_cents(self.total)


def compute_totals(items: Iterable[DocumentItem], tax_rate: float | Decimal) -> DocumentTotals:
    """Compute subtotal, tax and total for a list of line items.

    Args:
        items: Ordered line items
        tax_rate: Decimal tax rate (0.085 means 8.5%)

    Returns:
        DocumentTotals with subtotal, cent-rounded tax and total

    Example:
        >>> items = [DocumentItem(title="a", qty=1, unitPrice=2500),
        ...          DocumentItem(title="b", qty=2, unitPrice=150)]
        >>> totals = compute_totals(items, 0.085)
        >>> str(totals.total)
        '3038.00'
    """
    rate = to_decimal(tax_rate)
    subtotal = sum((line_total(item) for item in items), Decimal("0"))
    tax = round_money(subtotal * rate)
    return DocumentTotals(subtotal=subtotal, tax=tax, total=subtotal + tax, tax_rate=rate)
