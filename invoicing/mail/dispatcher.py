"""Mail dispatch through the Gmail API.

Builds a MIME multipart message (plain-text body plus an optional PDF
attachment) and submits it with ``users.messages.send`` under the delegated
credentials of an authorized identity.

Checks run cheapest first so that bad input never reaches the network:
recipients, then client configuration, then identity lookup, then the
provider call.

Based on Gmail API documentation:
https://developers.google.com/gmail/api/guides/sending
"""

import base64
import binascii
import logging
from email.message import EmailMessage
from typing import Any

from email_validator import EmailNotValidError, validate_email
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import BaseModel

from invoicing.mail.identity_store import IdentityStore
from invoicing.mail.oauth import SCOPES
from invoicing.shared.config import Settings
from invoicing.shared.errors import (
    AuthRequired,
    SendFailed,
    Unauthorized,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Invoice"


class MailAttachment(BaseModel):
    """PDF attachment as sent by the client.

    Attributes:
        filename: Attachment file name
        content_base64: Standard base64 of the PDF bytes
    """

    filename: str
    content_base64: str

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Attachment {self.filename} is not valid base64") from e


class SendResult(BaseModel):
    """Result of a successful send.

    Attributes:
        sender: Identity the message was sent as
        message_id: Provider message id
        thread_id: Provider thread id
    """

    sender: str
    message_id: str | None = None
    thread_id: str | None = None


def normalize_recipients(recipients: list[str] | None) -> list[str]:
    """Trim, drop blanks and validate every recipient address.

    Raises:
        ValidationError: If no recipient remains or one is malformed
    """
    cleaned = [r.strip() for r in (recipients or []) if r and r.strip()]
    if not cleaned:
        raise ValidationError("No recipients provided")
    for address in cleaned:
        try:
            validate_email(address, check_deliverability=False)
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid recipient address {address}: {e}") from e
    return cleaned


def build_message(
    sender: str,
    recipients: list[str],
    subject: str,
    body: str,
    attachment: MailAttachment | None = None,
) -> EmailMessage:
    """Build a multipart/mixed message with a text body and optional PDF.

    Raises:
        ValidationError: A header value or the attachment filename contains
            a line break
    """
    message = EmailMessage()
    try:
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(body)
        message.make_mixed()
        if attachment is not None:
            message.add_attachment(
                attachment.decode(),
                maintype="application",
                subtype="pdf",
                filename=attachment.filename,
            )
    except ValueError as e:
        raise ValidationError(f"Invalid message header: {e}") from e
    return message


def encode_raw(message: EmailMessage) -> str:
    """Encode a message as the base64url string the Gmail API expects."""
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


class GmailDispatcher:
    """Sends mail as one of the session's authorized identities."""

    def __init__(self, settings: Settings, identity_store: IdentityStore) -> None:
        """Initialize dispatcher.

        Args:
            settings: Application settings with Google client credentials
            identity_store: Store holding the session's authorized identities
        """
        self.settings = settings
        self.identity_store = identity_store

    def _gmail_service(self, credentials: Credentials) -> Any:
        return build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def send(
        self,
        session_id: str | None,
        recipients: list[str] | None,
        subject: str | None = None,
        body: str | None = None,
        attachment: MailAttachment | None = None,
        sender: str | None = None,
    ) -> SendResult:
        """Send a message with an optional PDF attachment.

        Args:
            session_id: Opaque session id from the cookie
            recipients: Recipient addresses (at least one)
            subject: Subject line (defaults to "Invoice")
            body: Plain-text body
            attachment: Optional PDF attachment
            sender: Preferred identity; defaults to the first authorized one

        Returns:
            SendResult with the identity used and provider ids

        Raises:
            ValidationError: No or malformed recipients, bad attachment encoding
            ConfigError: OAuth client credentials missing
            AuthRequired: No identity authorized in this session
            Unauthorized: Provider rejected the stored credentials
            SendFailed: Any other provider error
        """
        to = normalize_recipients(recipients)
        self.settings.require_google_oauth()

        identity = self.identity_store.get_token(session_id, sender)
        if identity is None:
            raise AuthRequired("No tokens stored; authorize first")
        sender_email, token = identity

        message = build_message(
            sender=sender_email,
            recipients=to,
            subject=subject or DEFAULT_SUBJECT,
            body=body or "",
            attachment=attachment,
        )

        try:
            credentials = Credentials.from_authorized_user_info(token, scopes=list(SCOPES))
        except ValueError as e:
            raise Unauthorized(f"Stored credentials for {sender_email} are incomplete") from e

        try:
            response = (
                self._gmail_service(credentials)
                .users()
                .messages()
                .send(userId="me", body={"raw": encode_raw(message)})
                .execute()
            )
        except HttpError as e:
            reason = getattr(e, "reason", None) or str(e)
            logger.error(f"Gmail send as {sender_email} failed ({e.resp.status}): {reason}")
            if e.resp.status == 401:
                raise Unauthorized(f"Unauthorized with Gmail: {reason}") from e
            raise SendFailed(f"Failed to send email: {reason}") from e
        except RefreshError as e:
            logger.error(f"Token refresh for {sender_email} failed: {e}")
            raise Unauthorized(f"Unauthorized with Gmail: {e}") from e
        except Exception as e:
            logger.error(f"Gmail send as {sender_email} failed: {e}")
            raise SendFailed(f"Failed to send email: {e}") from e

        logger.info(f"Sent message as {sender_email} to {len(to)} recipient(s)")
        return SendResult(
            sender=sender_email,
            message_id=response.get("id"),
            thread_id=response.get("threadId"),
        )
