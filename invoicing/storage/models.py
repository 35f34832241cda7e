"""ORM models for persisted invoices and quotations.

The two tables share a shape; they differ only in the name of the unique
business key, the deadline column (payment due vs. quote expiry) and a few
lifecycle columns.
"""

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from invoicing.storage.database import Base


class DocumentColumns:
    """Columns common to invoices and quotations.

    Subclasses set ``number_column`` (unique business key), ``deadline_column``
    and ``deadline_key`` (its camelCase name in API responses).
    """

    number_column = ""
    deadline_column = ""
    deadline_key = ""

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, nullable=True)
    bill_to = Column(JSON, nullable=False)
    from_info = Column(JSON, nullable=False)
    project = Column(String(255), nullable=True)
    issued_at = Column(String(64), nullable=False)
    payment_terms = Column(String(128), nullable=True)
    subtotal_cents = Column(Integer, nullable=True)
    tax_cents = Column(Integer, nullable=True)
    total_cents = Column(Integer, nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(32), nullable=False, default="draft")
    line_item_count = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    document_metadata = Column("metadata", JSON, nullable=True)
    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    @property
    def document_number(self) -> str:
        return getattr(self, self.number_column)

    def extra_fields(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        """Serialize a row with camelCase keys for API responses."""
        return {
            "id": self.id,
            "documentNumber": self.document_number,
            "customerId": self.customer_id,
            "billTo": self.bill_to,
            "from": self.from_info,
            "project": self.project,
            "issuedAt": self.issued_at,
            self.deadline_key: getattr(self, self.deadline_column),
            "paymentTerms": self.payment_terms,
            "subtotalCents": self.subtotal_cents,
            "taxCents": self.tax_cents,
            "totalCents": self.total_cents,
            "currency": self.currency,
            "status": self.status,
            "lineItemCount": self.line_item_count,
            "notes": self.notes,
            "metadata": self.document_metadata,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            **self.extra_fields(),
        }


class InvoiceRecord(DocumentColumns, Base):
    __tablename__ = "invoices"

    number_column = "invoice_number"
    deadline_column = "due_at"
    deadline_key = "dueAt"

    invoice_number = Column(String(64), nullable=False, unique=True)
    due_at = Column(String(64), nullable=True)
    paid_at = Column(String(64), nullable=True)
    paid_amount_cents = Column(Integer, nullable=True)

    def extra_fields(self) -> dict:
        return {"paidAt": self.paid_at, "paidAmountCents": self.paid_amount_cents}


class QuotationRecord(DocumentColumns, Base):
    __tablename__ = "quotations"

    number_column = "quotation_number"
    deadline_column = "valid_until"
    deadline_key = "validUntil"

    quotation_number = Column(String(64), nullable=False, unique=True)
    valid_until = Column(String(64), nullable=True)
    accepted_at = Column(String(64), nullable=True)

    def extra_fields(self) -> dict:
        return {"acceptedAt": self.accepted_at}
