"""FastAPI application for invoices and quotations.

Production-ready API with:
- Health, readiness and database checks
- Document save with per-kind conflict reconciliation
- HTML preview and PDF download
- Email delivery through OAuth-authorized Gmail identities
- Structured error responses
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Literal

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, Field

from invoicing.api import metrics
from invoicing.api.sessions import (
    clear_oauth_state_cookie,
    ensure_session_id,
    read_session_id,
    set_oauth_state_cookie,
    set_session_cookie,
    verify_oauth_state,
)
from invoicing.documents.renderer import DocumentRenderer
from invoicing.documents.schema import DocumentKind, DocumentPayload
from invoicing.documents.workflow import DocumentWorkflow, pdf_filename
from invoicing.mail.dispatcher import GmailDispatcher, MailAttachment
from invoicing.mail.identity_store import IdentityStore
from invoicing.mail.oauth import GoogleOAuthClient
from invoicing.pdf.base import PageFormat, PdfOptions
from invoicing.pdf.factory import create_pdf_converter
from invoicing.shared.config import get_settings
from invoicing.shared.errors import InvoicingError, RenderError, ValidationError
from invoicing.storage.database import engine_from_settings, init_schema, make_session_factory
from invoicing.storage.reconciler import DocumentStore, SaveOutcome

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

engine = engine_from_settings(settings)
session_factory = make_session_factory(engine)

store = DocumentStore(session_factory, default_currency=settings.default_currency)
renderer = DocumentRenderer(default_currency=settings.default_currency)
pdf_converter = create_pdf_converter(settings)
identity_store = IdentityStore(session_factory, settings.token_encryption_key)
oauth_client = GoogleOAuthClient(settings)
dispatcher = GmailDispatcher(settings, identity_store)
workflow = DocumentWorkflow(store, renderer, pdf_converter, dispatcher)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_schema(engine)
    logger.info(f"{settings.service_name} {settings.service_version} started")
    yield
    engine.dispose()


app = FastAPI(
    title="Invoicing Desk",
    description="Generate, preview, download and email invoices and quotations",
    version=settings.service_version,
    lifespan=lifespan,
)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


@app.exception_handler(InvoicingError)
async def invoicing_error_handler(request: Request, exc: InvoicingError) -> JSONResponse:
    """Convert service errors into JSON responses with their mapped status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies and parameters in the common error shape.

    Offending input values are left out; they may not be JSON-serializable
    (``Infinity``, ``NaN``).
    """
    message = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    logger.warning(f"{request.method} {request.url.path} rejected: {message}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"ok": False, "error": message or "Invalid request"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler so every failure still answers with JSON."""
    logger.error(
        f"{request.method} {request.url.path} failed unexpectedly: {exc!r}", exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"ok": False, "error": "Internal server error"},
    )


class DocumentCollection(str, Enum):
    """URL collection name for each document kind."""

    INVOICES = "invoices"
    QUOTATIONS = "quotations"

    @property
    def kind(self) -> DocumentKind:
        return DocumentKind.INVOICE if self is DocumentCollection.INVOICES else DocumentKind.QUOTATION


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class SaveResponse(BaseModel):
    """Document save response."""

    ok: bool = True
    action: Literal["inserted", "updated"]
    id: int
    document_number: str = Field(serialization_alias="documentNumber")


class EmailDocumentRequest(BaseModel):
    """Render a document to PDF and email it."""

    document: DocumentPayload
    recipients: list[str] = Field(default_factory=list)
    subject: str | None = None
    message: str | None = None
    sender: str | None = None


class GmailSendRequest(BaseModel):
    """Send a message with an already-rendered attachment."""

    recipients: list[str] | None = None
    subject: str | None = None
    message: str | None = None
    filename: str | None = None
    attachment_base64: str | None = Field(
        default=None, validation_alias=AliasChoices("attachment_base64", "attachmentBase64")
    )
    sender: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DeleteIdentityRequest(BaseModel):
    email: str | None = None


def _save_response(outcome: SaveOutcome, response: Response, status_code: int) -> dict[str, Any]:
    metrics.documents_saved_total.labels(kind=outcome.kind.value, action=outcome.action).inc()
    response.status_code = status_code
    return SaveResponse(
        action=outcome.action, id=outcome.id, document_number=outcome.document_number
    ).model_dump(by_alias=True)


def _pdf_options(page_format: PageFormat | None, scale: float | None) -> PdfOptions:
    defaults = pdf_converter.default_options()
    return PdfOptions(
        format=page_format or defaults.format,
        scale=scale if scale is not None else defaults.scale,
    )


def _pdf_response(filename: str, pdf: bytes) -> Response:
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe."""
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/api/db/health", tags=["Health"])
def database_health() -> dict[str, Any]:
    """Run ``SELECT 1`` against the database."""
    store.ping()
    return {"ok": True}


@app.post("/api/v1/documents/preview", response_class=HTMLResponse, tags=["Documents"])
def preview_document(
    payload: DocumentPayload,
    kind: DocumentKind = Query(DocumentKind.QUOTATION, description="invoice or quotation"),
) -> HTMLResponse:
    """Render a document to HTML for on-screen preview. Nothing is saved."""
    return HTMLResponse(content=workflow.preview(kind, payload))


@app.get("/api/v1/recent-activity", tags=["Documents"])
def recent_activity(
    limit: int | None = Query(None, ge=1, le=200, description="Rows to return"),
) -> dict[str, Any]:
    """Latest invoices and quotations merged, oldest first."""
    rows = store.recent_activity(limit or settings.recent_activity_limit)
    return {"ok": True, "recentActivity": rows}


@app.post("/api/v1/{collection}", tags=["Documents"])
def save_document(
    collection: DocumentCollection, payload: DocumentPayload, response: Response
) -> dict[str, Any]:
    """Save an invoice or quotation.

    ## Conflict handling

    - **Quotations**: saving an existing number updates that row in place
      (`action: "updated"`, same id).
    - **Invoices**: an existing number is rejected with 409; use
      `PUT /api/v1/invoices/{number}` to amend.

    Totals are recomputed from the items and tax rate; any totals in the body
    are ignored.
    """
    kind = collection.kind
    try:
        outcome = store.save(kind, payload)
    except InvoicingError:
        metrics.documents_saved_total.labels(kind=kind.value, action="failed").inc()
        raise
    return _save_response(outcome, response, status.HTTP_201_CREATED)


@app.put("/api/v1/{collection}/{number}", tags=["Documents"])
def amend_document(
    collection: DocumentCollection, number: str, payload: DocumentPayload, response: Response
) -> dict[str, Any]:
    """Overwrite every field of an existing document. Returns 404 if it does not exist."""
    outcome = store.amend(collection.kind, number, payload)
    return _save_response(outcome, response, status.HTTP_200_OK)


@app.get("/api/v1/{collection}/{number}", tags=["Documents"])
def get_document(collection: DocumentCollection, number: str) -> dict[str, Any]:
    """Fetch a stored document by number."""
    return {"ok": True, "document": store.get(collection.kind, number)}


@app.post("/api/v1/{collection}/pdf", tags=["Documents"])
def render_pdf(
    collection: DocumentCollection,
    payload: DocumentPayload,
    page_format: PageFormat | None = Query(None, alias="format"),
    scale: float | None = Query(None, ge=0.1, le=2.0),
) -> Response:
    """Render a document to PDF without saving it.

    Any payload that parses renders: missing fields show up blank.
    """
    kind = collection.kind
    engine_name = pdf_converter.engine_name
    start_time = time.time()
    try:
        pdf = workflow.render_pdf(kind, payload, _pdf_options(page_format, scale))
    except RenderError:
        metrics.pdf_renders_total.labels(engine=engine_name, status="failed").inc()
        raise
    metrics.pdf_render_duration_seconds.labels(engine=engine_name).observe(time.time() - start_time)
    metrics.pdf_renders_total.labels(engine=engine_name, status="success").inc()
    return _pdf_response(pdf_filename(payload.document_number, kind), pdf)


@app.post("/api/v1/{collection}/download", tags=["Documents"])
def download_document(
    collection: DocumentCollection,
    payload: DocumentPayload,
    page_format: PageFormat | None = Query(None, alias="format"),
    scale: float | None = Query(None, ge=0.1, le=2.0),
) -> Response:
    """Save the document (best effort) and return its PDF.

    A failed save is logged and reported in the `X-Document-Saved` header; the
    download still succeeds.
    """
    filename, pdf, saved = workflow.download(
        collection.kind, payload, _pdf_options(page_format, scale)
    )
    metrics.pdf_renders_total.labels(engine=pdf_converter.engine_name, status="success").inc()
    response = _pdf_response(filename, pdf)
    response.headers["X-Document-Saved"] = "true" if saved else "false"
    return response


@app.post("/api/v1/{collection}/send", tags=["Documents"])
def send_document(
    collection: DocumentCollection, body: EmailDocumentRequest, request: Request
) -> dict[str, Any]:
    """Save (best effort), render and email a document as PDF attachment.

    Sends as `sender` when that identity is authorized in this session,
    otherwise as the first authorized identity.
    """
    try:
        result, saved = workflow.email(
            collection.kind,
            body.document,
            session_id=read_session_id(request, settings),
            recipients=body.recipients,
            subject=body.subject,
            message=body.message,
            sender=request.query_params.get("sender") or body.sender,
        )
    except InvoicingError:
        metrics.emails_sent_total.labels(status="failed").inc()
        raise
    metrics.emails_sent_total.labels(status="success").inc()
    return {"ok": True, "saved": saved is not None, "result": result.model_dump()}


@app.get("/api/gmail/auth", tags=["Mail"])
def gmail_authorize() -> RedirectResponse:
    """Redirect to the provider's consent screen.

    The consent state is also stored in a short-lived cookie and checked when
    the provider calls back.
    """
    url, state = oauth_client.authorization_url()
    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    set_oauth_state_cookie(response, settings, state)
    return response


@app.get("/api/gmail/oauth2callback", tags=["Mail"])
def gmail_oauth_callback(
    request: Request, code: str | None = None, state: str | None = None
) -> RedirectResponse:
    """Exchange the code, store the identity for this session and go back to the app."""
    if not code:
        raise ValidationError("Missing code")
    verify_oauth_state(request, settings, state)
    email, token = oauth_client.exchange_code(code)
    session_id = ensure_session_id(request, settings)
    identity_store.save(session_id, email, token)

    response = RedirectResponse(settings.post_auth_redirect, status_code=status.HTTP_302_FOUND)
    set_session_cookie(response, settings, session_id)
    clear_oauth_state_cookie(response, settings)
    return response


@app.get("/api/gmail/list", tags=["Mail"])
def gmail_list(request: Request) -> dict[str, list[str]]:
    """Emails authorized in this session."""
    return {"accounts": identity_store.list_emails(read_session_id(request, settings))}


@app.post("/api/gmail/delete", tags=["Mail"])
def gmail_delete(
    request: Request, body: DeleteIdentityRequest
) -> JSONResponse:
    """Forget one authorized identity."""
    if not body.email:
        raise ValidationError("Missing email")
    session_id = read_session_id(request, settings)
    remaining = identity_store.delete(session_id, body.email)

    response = JSONResponse({"ok": True})
    if session_id:
        set_session_cookie(response, settings, session_id, remaining=remaining)
    return response


@app.post("/api/gmail/send", tags=["Mail"])
def gmail_send(
    request: Request, body: GmailSendRequest
) -> dict[str, Any]:
    """Send a message, optionally with a base64 PDF attachment."""
    attachment = None
    if body.attachment_base64 and body.filename:
        attachment = MailAttachment(filename=body.filename, content_base64=body.attachment_base64)
    try:
        result = dispatcher.send(
            session_id=read_session_id(request, settings),
            recipients=body.recipients,
            subject=body.subject,
            body=body.message,
            attachment=attachment,
            sender=request.query_params.get("sender") or body.sender,
        )
    except InvoicingError:
        metrics.emails_sent_total.labels(status="failed").inc()
        raise
    metrics.emails_sent_total.labels(status="success").inc()
    return {"ok": True, "result": result.model_dump()}
