"""HTML rendering for invoices and quotations.

Produces a single self-contained HTML page with inlined styling, suitable
for both on-screen preview and headless-browser PDF conversion.

Every user-controlled value is escaped by Jinja2's autoescape. Output is a
pure function of the payload: the same input always renders to the same
bytes, since nothing time-dependent is injected into the template.

Based on Jinja2 documentation:
https://jinja.palletsprojects.com/en/stable/api/#autoescaping
"""

import logging
from decimal import Decimal
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError, select_autoescape

from invoicing.documents.schema import DocumentKind, DocumentPayload
from invoicing.documents.totals import DocumentTotals, compute_totals, line_total, round_money
from invoicing.shared.errors import RenderError

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"
TEMPLATE_NAME = "document.html"

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}

_SAFE_LOGO_PREFIXES = ("http://", "https://", "data:image/")


def format_money(value: Decimal | float, currency: str = "USD") -> str:
    """Format an amount like ``$2,800.00``.

    Currencies without a known symbol are prefixed with their code.
    """
    amount = round_money(Decimal(str(value)))
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{currency.upper()} {amount:,.2f}"
    return f"{symbol}{amount:,.2f}"


def format_quantity(value: float) -> str:
    return f"{value:g}"


def format_rate(rate: Decimal) -> str:
    """Render a decimal tax rate as a percentage label body (0.085 -> '8.50')."""
    return f"{round_money(rate * 100):.2f}"


def safe_logo_url(url: str | None) -> str | None:
    """Return the logo URL only if it uses an allowed scheme."""
    if not url:
        return None
    candidate = url.strip()
    if candidate.lower().startswith(_SAFE_LOGO_PREFIXES):
        return candidate
    logger.warning("Dropping logo URL with unsupported scheme")
    return None


class DocumentRenderer:
    """Renders document payloads to HTML using the bundled template."""

    def __init__(self, default_currency: str = "USD", template_dir: Path = TEMPLATE_DIR) -> None:
        """Initialize renderer.

        Args:
            default_currency: Currency used when a payload does not name one
            template_dir: Directory holding ``document.html``
        """
        self.default_currency = default_currency
        self._env = Environment(
            loader=FileSystemLoader(str(template_dir)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(
        self,
        payload: DocumentPayload,
        kind: DocumentKind,
        totals: DocumentTotals | None = None,
    ) -> str:
        """Render a document to a complete HTML string.

        Args:
            payload: Document data
            kind: Invoice or quotation; selects title and date labels
            totals: Precomputed totals (computed from the payload if omitted)

        Returns:
            HTML document as a string

        Raises:
            RenderError: If the template cannot be loaded or rendered
        """
        if totals is None:
            totals = compute_totals(payload.items, payload.tax_rate)
        currency = (payload.currency or self.default_currency).upper()

        def money(value: Decimal | float) -> str:
            return format_money(value, currency)

        rows = [
            {
                "title": item.title,
                "description": item.description or "",
                "quantity": format_quantity(item.quantity),
                "unit_price": money(item.unit_price),
                "line_total": money(line_total(item)),
            }
            for item in payload.items
        ]

        is_invoice = kind is DocumentKind.INVOICE
        context = {
            "title": kind.heading,
            "document_number": payload.document_number or "",
            "logo_url": safe_logo_url(payload.logo_url),
            "bill_to": payload.bill_to,
            "sender": payload.sender,
            "details": [
                ("Invoice Date:" if is_invoice else "Quote Date:", payload.issued_at or ""),
                ("Due Date:" if is_invoice else "Valid Until:", payload.deadline or ""),
                ("Payment Terms:", payload.payment_terms or ""),
                ("Project:", payload.project or ""),
            ],
            "items": rows,
            "subtotal": money(totals.subtotal),
            "tax_label": f"Tax ({format_rate(totals.tax_rate)}%):",
            "tax": money(totals.tax),
            "total": money(totals.total),
            "terms": [term for term in (t.strip() for t in payload.terms) if term],
            "contact_email": payload.company_contact_email or payload.sender.email or "",
            "contact_phone": payload.company_contact_phone or payload.sender.phone or "",
        }

        try:
            template = self._env.get_template(TEMPLATE_NAME)
            return template.render(**context)
        except TemplateError as e:
            logger.error(f"Template rendering failed: {e}")
            raise RenderError(f"Template rendering failed: {e}") from e
