"""Document payload models for invoices and quotations.

Payloads are deliberately lenient: previews and PDFs must render from partial
form state, so every field is optional here. The stricter rules that apply
before persistence live in ``validate_for_save``.
"""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from invoicing.shared.errors import ValidationError


class DocumentKind(str, Enum):
    """Document type; controls titles, labels and the upsert policy."""

    INVOICE = "invoice"
    QUOTATION = "quotation"

    @property
    def heading(self) -> str:
        return self.value.upper()


class DocumentItem(BaseModel):
    """Single line item. Line total is quantity x unit price and never stored."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    description: str | None = None
    quantity: float = Field(
        default=1, allow_inf_nan=False, validation_alias=AliasChoices("quantity", "qty")
    )
    unit_price: float = Field(
        default=0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("unit_price", "unitPrice", "price"),
    )


class PartyBlock(BaseModel):
    """Bill-To or From contact block. All fields are optional."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    company: str | None = None
    address_line1: str | None = Field(
        default=None, validation_alias=AliasChoices("address_line1", "addressLine1")
    )
    address_line2: str | None = Field(
        default=None, validation_alias=AliasChoices("address_line2", "addressLine2")
    )
    phone: str | None = None
    email: str | None = None

    def to_storage(self) -> dict[str, str]:
        """Serialize to the camelCase JSON shape stored in the record tables."""
        data = {
            "name": self.name,
            "company": self.company,
            "addressLine1": self.address_line1,
            "addressLine2": self.address_line2,
            "phone": self.phone,
            "email": self.email,
        }
        return {key: value for key, value in data.items() if value is not None}


class DocumentPayload(BaseModel):
    """Normalized document data as submitted by the form.

    Accepts the field names used by both the invoice and quotation forms
    (``invoiceNumber``/``quotationNumber``, ``invoiceDate``/``quoteDate``,
    ``dueDate``/``validUntil``) so either form can post to either endpoint.
    """

    model_config = ConfigDict(populate_by_name=True)

    document_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "document_number", "documentNumber", "invoiceNumber", "quotationNumber", "number"
        ),
    )
    customer_id: int | None = Field(
        default=None, validation_alias=AliasChoices("customer_id", "customerId")
    )
    issued_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("issued_at", "issuedAt", "invoiceDate", "quoteDate"),
    )
    deadline: str | None = Field(
        default=None,
        validation_alias=AliasChoices("deadline", "dueDate", "dueAt", "validUntil"),
    )
    payment_terms: str | None = Field(
        default=None, validation_alias=AliasChoices("payment_terms", "paymentTerms")
    )
    project: str | None = None
    bill_to: PartyBlock = Field(
        default_factory=PartyBlock, validation_alias=AliasChoices("bill_to", "billTo")
    )
    sender: PartyBlock = Field(
        default_factory=PartyBlock, validation_alias=AliasChoices("sender", "from")
    )
    items: list[DocumentItem] = Field(default_factory=list)
    tax_rate: float = Field(
        default=0, allow_inf_nan=False, validation_alias=AliasChoices("tax_rate", "taxRate")
    )
    terms: list[str] = Field(default_factory=list)
    logo_url: str | None = Field(default=None, validation_alias=AliasChoices("logo_url", "logoUrl"))
    company_contact_email: str | None = Field(
        default=None,
        validation_alias=AliasChoices("company_contact_email", "companyContactEmail"),
    )
    company_contact_phone: str | None = Field(
        default=None,
        validation_alias=AliasChoices("company_contact_phone", "companyContactPhone"),
    )
    currency: str | None = None
    status: str | None = None
    notes: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: int | None = Field(
        default=None, validation_alias=AliasChoices("created_by", "createdBy")
    )

    # Kind-specific supplements
    paid_at: str | None = Field(default=None, validation_alias=AliasChoices("paid_at", "paidAt"))
    paid_amount: float | None = Field(
        default=None,
        allow_inf_nan=False,
        validation_alias=AliasChoices("paid_amount", "paidAmount"),
    )
    accepted_at: str | None = Field(
        default=None, validation_alias=AliasChoices("accepted_at", "acceptedAt")
    )


def validate_for_save(payload: DocumentPayload, kind: DocumentKind) -> None:
    """Check the rules a document must satisfy before it is persisted.

    Raises:
        ValidationError: Listing every problem found, in form order
    """
    errors: list[str] = []
    label = kind.value.capitalize()
    if not payload.document_number or not payload.document_number.strip():
        errors.append(f"{label} number is required.")
    if not payload.items:
        errors.append(f"At least one {kind.value} item is required.")
    for idx, item in enumerate(payload.items, start=1):
        if not item.title.strip():
            errors.append(f"Item {idx} is missing a description/title.")
        if item.quantity <= 0:
            errors.append(f"Item {idx} must have quantity > 0.")
        if item.unit_price < 0:
            errors.append(f"Item {idx} must have unit price >= 0.")
    if errors:
        raise ValidationError(" ".join(errors))
