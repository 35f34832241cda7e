"""Document workflows combining rendering, persistence and mail.

Download and email both save the document first on a best-effort basis:
a failed save is logged and the download or send still proceeds. An emailed
document is stored as a draft and only marked sent once delivery succeeds.
"""

import base64
import logging
import re

from invoicing.documents.renderer import DocumentRenderer
from invoicing.documents.schema import DocumentKind, DocumentPayload, validate_for_save
from invoicing.mail.dispatcher import GmailDispatcher, MailAttachment, SendResult, normalize_recipients
from invoicing.pdf.base import PdfConverter, PdfOptions
from invoicing.shared.errors import InvoicingError
from invoicing.storage.reconciler import DocumentStore, SaveOutcome

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9\-_.]")


def pdf_filename(document_number: str | None, kind: DocumentKind) -> str:
    """Attachment/download file name derived from the document number."""
    stem = _UNSAFE_FILENAME_CHARS.sub("_", (document_number or "").strip()) or kind.value
    return f"{stem}.pdf"


class DocumentWorkflow:
    """Preview, download and email flows for invoices and quotations."""

    def __init__(
        self,
        store: DocumentStore,
        renderer: DocumentRenderer,
        pdf_converter: PdfConverter,
        dispatcher: GmailDispatcher,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.pdf_converter = pdf_converter
        self.dispatcher = dispatcher

    def preview(self, kind: DocumentKind, payload: DocumentPayload) -> str:
        return self.renderer.render(payload, kind)

    def render_pdf(
        self, kind: DocumentKind, payload: DocumentPayload, options: PdfOptions | None = None
    ) -> bytes:
        html = self.renderer.render(payload, kind)
        return self.pdf_converter.convert(html, options)

    def try_save(
        self, kind: DocumentKind, payload: DocumentPayload, status: str
    ) -> SaveOutcome | None:
        """Save without letting a failure interrupt the caller's main action."""
        try:
            return self.store.save(kind, payload, status=status)
        except InvoicingError as e:
            logger.warning(f"Best-effort save of {kind.value} {payload.document_number} failed: {e}")
            return None

    def download(
        self, kind: DocumentKind, payload: DocumentPayload, options: PdfOptions | None = None
    ) -> tuple[str, bytes, SaveOutcome | None]:
        """Validate, save best-effort and render the PDF for download.

        Returns:
            ``(filename, pdf_bytes, save_outcome)``; outcome is None when the save failed
        """
        validate_for_save(payload, kind)
        saved = self.try_save(kind, payload, status="draft")
        pdf = self.render_pdf(kind, payload, options)
        return pdf_filename(payload.document_number, kind), pdf, saved

    def email(
        self,
        kind: DocumentKind,
        payload: DocumentPayload,
        session_id: str | None,
        recipients: list[str] | None,
        subject: str | None = None,
        message: str | None = None,
        sender: str | None = None,
    ) -> tuple[SendResult, SaveOutcome | None]:
        """Validate, save best-effort, render the PDF and send it.

        The document is saved as ``draft`` and moved to ``sent`` after the
        provider accepts the message. A status carried by the payload is kept.

        Raises:
            ValidationError: Payload or recipients are invalid (nothing is saved or sent)
            RenderError: PDF conversion failed
            AuthRequired, Unauthorized, SendFailed, ConfigError: From the dispatcher
        """
        validate_for_save(payload, kind)
        to = normalize_recipients(recipients)
        saved = self.try_save(kind, payload, status="draft")
        pdf = self.render_pdf(kind, payload)
        attachment = MailAttachment(
            filename=pdf_filename(payload.document_number, kind),
            content_base64=base64.b64encode(pdf).decode("ascii"),
        )
        result = self.dispatcher.send(
            session_id=session_id,
            recipients=to,
            subject=subject or f"{kind.value.capitalize()} {payload.document_number}",
            body=message,
            attachment=attachment,
            sender=sender,
        )
        if saved is not None and payload.status is None:
            self._mark_sent(saved)
        return result, saved

    def _mark_sent(self, saved: SaveOutcome) -> None:
        try:
            self.store.set_status(saved.kind, saved.document_number, "sent")
        except InvoicingError as e:
            logger.warning(
                f"Could not mark {saved.kind.value} {saved.document_number} as sent: {e}"
            )
