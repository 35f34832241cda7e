"""Record store reconciliation for invoices and quotations.

A save first attempts an insert keyed by the document number. When the store
reports a uniqueness conflict on that key, the per-kind conflict policy
decides what happens:

- quotations are reconciled: every mutable field of the existing row is
  overwritten and ``updated_at`` refreshed (same id, same ``created_at``);
- invoices are rejected with ``DuplicateDocumentError`` and the existing row
  is left untouched. Changing an invoice takes an explicit ``amend``.

Insert and update are separate transactions. Two concurrent savers using the
same new number may therefore see a duplicate-key failure instead of a clean
update.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from invoicing.documents.schema import DocumentKind, DocumentPayload, validate_for_save
from invoicing.documents.totals import DocumentTotals, compute_totals, to_cents, to_decimal
from invoicing.shared.errors import (
    DocumentNotFoundError,
    DuplicateDocumentError,
    StorageError,
    ValidationError,
)
from invoicing.storage.models import DocumentColumns, InvoiceRecord, QuotationRecord

logger = logging.getLogger(__name__)


class ConflictPolicy(str, Enum):
    """What a save does when the document number already exists."""

    UPDATE = "update"
    REJECT = "reject"


CONFLICT_POLICIES: dict[DocumentKind, ConflictPolicy] = {
    DocumentKind.QUOTATION: ConflictPolicy.UPDATE,
    DocumentKind.INVOICE: ConflictPolicy.REJECT,
}

MODELS: dict[DocumentKind, type[DocumentColumns]] = {
    DocumentKind.INVOICE: InvoiceRecord,
    DocumentKind.QUOTATION: QuotationRecord,
}


class SaveOutcome(BaseModel):
    """Result of a save or amend.

    Attributes:
        action: Whether a row was inserted or an existing row updated
        id: Primary key of the affected row
        document_number: Business key of the affected row
        kind: Document type
    """

    action: Literal["inserted", "updated"]
    id: int
    document_number: str
    kind: DocumentKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStore:
    """Persists invoices and quotations through SQLAlchemy."""

    def __init__(
        self,
        session_factory: sessionmaker,
        default_currency: str = "USD",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize document store.

        Args:
            session_factory: Session factory bound to the database engine
            default_currency: Currency stored when a payload does not name one
            clock: Source of created/updated timestamps
        """
        self._session_factory = session_factory
        self.default_currency = default_currency.upper()
        self._clock = clock

    def _row_values(
        self,
        kind: DocumentKind,
        payload: DocumentPayload,
        totals: DocumentTotals,
        status: str,
        now: datetime,
    ) -> dict[str, Any]:
        """Map a payload onto the mutable columns of its table."""
        model = MODELS[kind]
        values: dict[str, Any] = {
            model.deadline_column: payload.deadline,
            "customer_id": payload.customer_id,
            "bill_to": payload.bill_to.to_storage(),
            "from_info": payload.sender.to_storage(),
            "project": payload.project,
            "issued_at": payload.issued_at or now.isoformat(),
            "payment_terms": payload.payment_terms,
            "subtotal_cents": totals.subtotal_cents,
            "tax_cents": totals.tax_cents,
            "total_cents": totals.total_cents,
            "currency": (payload.currency or self.default_currency).upper(),
            "status": payload.status or status,
            "line_item_count": len(payload.items),
            "notes": payload.notes,
            "document_metadata": payload.metadata,
            "created_by": payload.created_by,
        }
        if kind is DocumentKind.INVOICE:
            values["paid_at"] = payload.paid_at
            values["paid_amount_cents"] = (
                to_cents(to_decimal(payload.paid_amount))
                if payload.paid_amount is not None
                else None
            )
        else:
            values["accepted_at"] = payload.accepted_at
        return values

    def save(
        self, kind: DocumentKind, payload: DocumentPayload, status: str = "draft"
    ) -> SaveOutcome:
        """Insert a document, reconciling number conflicts per kind.

        Args:
            kind: Invoice or quotation
            payload: Document data; totals are recomputed from its items
            status: Status stored when the payload does not carry one

        Returns:
            SaveOutcome telling whether the row was inserted or updated

        Raises:
            ValidationError: If the payload is not fit for persistence
            DuplicateDocumentError: If an invoice with the same number exists
            StorageError: If the database rejects the operation
        """
        validate_for_save(payload, kind)
        number = (payload.document_number or "").strip()
        if not number:
            raise ValidationError(f"{kind.value.capitalize()} number is required.")
        model = MODELS[kind]
        now = self._clock()
        values = self._row_values(
            kind, payload, compute_totals(payload.items, payload.tax_rate), status, now
        )

        try:
            with self._session_factory() as session:
                row = model(**{model.number_column: number}, **values)
                row.created_at = now
                row.updated_at = now
                session.add(row)
                session.commit()
                logger.info(f"Inserted {kind.value} {number} (id={row.id})")
                return SaveOutcome(action="inserted", id=row.id, document_number=number, kind=kind)
        except IntegrityError as e:
            conflict = e
        except SQLAlchemyError as e:
            logger.error(f"Insert of {kind.value} {number} failed: {e}")
            raise StorageError(f"Insert failed: {e}") from e

        if not self.exists(kind, number):
            logger.error(f"Insert of {kind.value} {number} failed: {conflict.orig}")
            raise StorageError(f"Insert failed: {conflict.orig}") from conflict

        if CONFLICT_POLICIES[kind] is ConflictPolicy.REJECT:
            logger.warning(f"Rejected duplicate {kind.value} number {number}")
            raise DuplicateDocumentError(
                f"{kind.value.capitalize()} {number} already exists; amend it instead"
            ) from conflict

        logger.info(f"{kind.value.capitalize()} {number} exists, updating in place")
        return self._update(kind, number, values, now)

    def amend(
        self, kind: DocumentKind, number: str, payload: DocumentPayload, status: str = "draft"
    ) -> SaveOutcome:
        """Overwrite every mutable field of an existing document.

        The payload's own number, if any, must match ``number``.

        Raises:
            ValidationError: If the payload is not fit for persistence
            DocumentNotFoundError: If no document has that number
            StorageError: If the database rejects the operation
        """
        if payload.document_number is None:
            payload = payload.model_copy(update={"document_number": number})
        elif payload.document_number.strip() != number:
            raise ValidationError("Document number in the body does not match the URL")
        validate_for_save(payload, kind)
        now = self._clock()
        values = self._row_values(
            kind, payload, compute_totals(payload.items, payload.tax_rate), status, now
        )
        return self._update(kind, number, values, now)

    def _update(
        self, kind: DocumentKind, number: str, values: dict[str, Any], now: datetime
    ) -> SaveOutcome:
        model = MODELS[kind]
        number_col = getattr(model, model.number_column)
        try:
            with self._session_factory() as session:
                row = session.scalars(select(model).where(number_col == number)).one_or_none()
                if row is None:
                    raise DocumentNotFoundError(f"{kind.value.capitalize()} {number} not found")
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = now
                session.commit()
                logger.info(f"Updated {kind.value} {number} (id={row.id})")
                return SaveOutcome(action="updated", id=row.id, document_number=number, kind=kind)
        except SQLAlchemyError as e:
            logger.error(f"Update of {kind.value} {number} failed: {e}")
            raise StorageError(f"Update failed: {e}") from e

    def set_status(self, kind: DocumentKind, number: str, status: str) -> SaveOutcome:
        """Change only the status of an existing document.

        Raises:
            DocumentNotFoundError: If no document has that number
            StorageError: If the database rejects the operation
        """
        return self._update(kind, number, {"status": status}, self._clock())

    def exists(self, kind: DocumentKind, number: str) -> bool:
        model = MODELS[kind]
        number_col = getattr(model, model.number_column)
        try:
            with self._session_factory() as session:
                found = session.scalar(select(model.id).where(number_col == number))
        except SQLAlchemyError as e:
            raise StorageError(f"Lookup failed: {e}") from e
        return found is not None

    def get(self, kind: DocumentKind, number: str) -> dict[str, Any]:
        """Fetch one document as an API dict.

        Raises:
            DocumentNotFoundError: If no document has that number
        """
        model = MODELS[kind]
        number_col = getattr(model, model.number_column)
        try:
            with self._session_factory() as session:
                row = session.scalars(select(model).where(number_col == number)).one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Lookup failed: {e}") from e
        if row is None:
            raise DocumentNotFoundError(f"{kind.value.capitalize()} {number} not found")
        return {"kind": kind.value, **row.to_dict()}

    def recent_activity(self, limit: int = 16) -> list[dict[str, Any]]:
        """Latest documents of both kinds, oldest first.

        Takes the newest ``limit`` rows from each table, merges them, sorts by
        creation time ascending and keeps the newest ``limit`` overall.
        """
        merged: list[tuple[datetime, int, dict[str, Any]]] = []
        try:
            with self._session_factory() as session:
                for kind, model in MODELS.items():
                    rows = session.scalars(
                        select(model).order_by(model.created_at.desc(), model.id.desc()).limit(limit)
                    )
                    for row in rows:
                        merged.append((row.created_at, row.id, {"kind": kind.value, **row.to_dict()}))
        except SQLAlchemyError as e:
            logger.error(f"Recent activity query failed: {e}")
            raise StorageError(f"Query failed: {e}") from e

        merged.sort(key=lambda entry: (entry[0], entry[1]))
        return [entry[2] for entry in merged[-limit:]]

    def ping(self) -> bool:
        """Run ``SELECT 1`` against the database.

        Raises:
            StorageError: If the database is unreachable
        """
        try:
            with self._session_factory() as session:
                session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database health check failed: {e}")
            raise StorageError(f"Database unreachable: {e}") from e
        return True
