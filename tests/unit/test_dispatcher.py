"""Unit tests for GmailDispatcher.

Tests mail sending with a mocked Gmail API service.
"""

import base64
from email import message_from_bytes, policy
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from invoicing.mail.dispatcher import (
    GmailDispatcher,
    MailAttachment,
    build_message,
    normalize_recipients,
)
from invoicing.mail.identity_store import IdentityStore
from invoicing.shared.config import Settings
from invoicing.shared.errors import (
    AuthRequired,
    ConfigError,
    SendFailed,
    Unauthorized,
    ValidationError,
)

PDF_BYTES = b"%PDF-1.4 test document"
TOKEN = {
    "token": "ya29.access",
    "refresh_token": "1//refresh",
    "client_id": "test-client-id.apps.googleusercontent.com",
    "client_secret": "test-client-secret",
}


@pytest.fixture
def mail_settings() -> Settings:
    """Create settings with OAuth client configured."""
    return Settings(
        google_client_id="test-client-id.apps.googleusercontent.com",
        google_client_secret="test-client-secret",
        google_redirect_uri="http://localhost:8000/api/gmail/oauth2callback",
    )


@pytest.fixture
def identity_store() -> MagicMock:
    """Identity store holding one authorized sender."""
    mock = MagicMock(spec=IdentityStore)
    mock.get_token.return_value = ("owner@studionine.com", TOKEN)
    return mock


@pytest.fixture
def gmail_service() -> MagicMock:
    """Gmail service whose send succeeds."""
    mock = MagicMock()
    mock.users.return_value.messages.return_value.send.return_value.execute.return_value = {
        "id": "msg-123",
        "threadId": "thread-456",
    }
    return mock


@pytest.fixture
def attachment() -> MailAttachment:
    return MailAttachment(
        filename="INV-1.pdf", content_base64=base64.b64encode(PDF_BYTES).decode("ascii")
    )


def _sent_message(gmail_service: MagicMock):  # type: ignore[no-untyped-def]
    send = gmail_service.users.return_value.messages.return_value.send
    raw = send.call_args.kwargs["body"]["raw"]
    return message_from_bytes(base64.urlsafe_b64decode(raw), policy=policy.default)


def _http_error(status: int, message: str) -> HttpError:
    resp = MagicMock(status=status, reason=message)
    content = f'{{"error": {{"code": {status}, "message": "{message}"}}}}'.encode()
    return HttpError(resp, content)


class TestRecipients:
    """Recipient normalization."""

    def test_trims_and_drops_blanks(self) -> None:
        """Whitespace is trimmed and empty entries dropped."""
        assert normalize_recipients([" client@acme-corp.com ", "", "  "]) == [
            "client@acme-corp.com"
        ]

    def test_empty_rejected(self) -> None:
        """No usable recipient raises ValidationError."""
        with pytest.raises(ValidationError, match="No recipients provided"):
            normalize_recipients(["  "])
        with pytest.raises(ValidationError, match="No recipients provided"):
            normalize_recipients(None)

    def test_malformed_rejected(self) -> None:
        """Addresses without a domain are rejected."""
        with pytest.raises(ValidationError, match="Invalid recipient address"):
            normalize_recipients(["not-an-address"])


class TestBuildMessage:
    """MIME construction."""

    def test_multipart_with_pdf(self, attachment: MailAttachment) -> None:
        """Message is multipart/mixed with a text body and a PDF part."""
        message = build_message(
            sender="owner@studionine.com",
            recipients=["a@acme-corp.com", "b@acme-corp.com"],
            subject="Invoice INV-1",
            body="Please find attached.",
            attachment=attachment,
        )

        assert message.get_content_type() == "multipart/mixed"
        assert message["To"] == "a@acme-corp.com, b@acme-corp.com"
        parts = list(message.iter_parts())
        assert parts[0].get_content_type() == "text/plain"
        assert "Please find attached." in parts[0].get_content()
        assert parts[1].get_content_type() == "application/pdf"
        assert parts[1].get_filename() == "INV-1.pdf"
        assert parts[1].get_content() == PDF_BYTES

    def test_without_attachment(self) -> None:
        """Message without attachment has only the text part."""
        message = build_message("owner@studionine.com", ["a@acme-corp.com"], "Hi", "Body")

        assert [p.get_content_type() for p in message.iter_parts()] == ["text/plain"]

    def test_bad_base64_attachment(self) -> None:
        """Undecodable attachment is a client error."""
        bad = MailAttachment(filename="x.pdf", content_base64="***")

        with pytest.raises(ValidationError, match="not valid base64"):
            build_message("owner@studionine.com", ["a@acme-corp.com"], "Hi", "Body", bad)

    def test_line_break_in_subject_rejected(self) -> None:
        """A subject carrying an extra header line is a client error."""
        with pytest.raises(ValidationError, match="Invalid message header"):
            build_message(
                "owner@studionine.com",
                ["a@acme-corp.com"],
                "Invoice\r\nBcc: everyone@elsewhere.com",
                "Body",
            )

    def test_line_break_in_filename_rejected(self) -> None:
        """Attachment names cannot smuggle header lines either."""
        named = MailAttachment(
            filename="INV-1.pdf\r\nBcc: everyone@elsewhere.com",
            content_base64=base64.b64encode(PDF_BYTES).decode("ascii"),
        )

        with pytest.raises(ValidationError, match="Invalid message header"):
            build_message("owner@studionine.com", ["a@acme-corp.com"], "Hi", "Body", named)


class TestSend:
    """GmailDispatcher.send."""

    def test_success(
        self,
        mail_settings: Settings,
        identity_store: MagicMock,
        gmail_service: MagicMock,
        attachment: MailAttachment,
    ) -> None:
        """Message is sent as the stored identity with the PDF attached."""
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service):
            result = dispatcher.send(
                session_id="sess-1",
                recipients=["client@acme-corp.com"],
                subject="Invoice INV-1",
                body="Attached.",
                attachment=attachment,
            )

        assert result.sender == "owner@studionine.com"
        assert result.message_id == "msg-123"
        assert result.thread_id == "thread-456"
        send = gmail_service.users.return_value.messages.return_value.send
        assert send.call_args.kwargs["userId"] == "me"
        sent = _sent_message(gmail_service)
        assert sent["From"] == "owner@studionine.com"
        assert sent["Subject"] == "Invoice INV-1"
        identity_store.get_token.assert_called_once_with("sess-1", None)

    def test_default_subject(
        self, mail_settings: Settings, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """Missing subject defaults to "Invoice"."""
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service):
            dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])

        assert _sent_message(gmail_service)["Subject"] == "Invoice"

    def test_header_injection_never_sent(
        self, mail_settings: Settings, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """A subject with a line break fails before the provider is called."""
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service) as mock_build:
            with pytest.raises(ValidationError):
                dispatcher.send(
                    session_id="sess-1",
                    recipients=["client@acme-corp.com"],
                    subject="Invoice\nBcc: everyone@elsewhere.com",
                )

        mock_build.assert_not_called()

    def test_no_recipients_checked_first(
        self, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """Zero recipients fail before config, identity or provider are touched."""
        dispatcher = GmailDispatcher(Settings(google_client_id=""), identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service) as mock_build:
            with pytest.raises(ValidationError):
                dispatcher.send(session_id="sess-1", recipients=[])

        identity_store.get_token.assert_not_called()
        mock_build.assert_not_called()

    def test_missing_oauth_config(self, identity_store: MagicMock) -> None:
        """Unconfigured client is a configuration error."""
        settings = Settings(google_client_id="", google_client_secret="", google_redirect_uri="")
        dispatcher = GmailDispatcher(settings, identity_store)

        with pytest.raises(ConfigError):
            dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])

    def test_no_identity(self, mail_settings: Settings, identity_store: MagicMock) -> None:
        """Session without authorized identity requires authorization."""
        identity_store.get_token.return_value = None
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with pytest.raises(AuthRequired, match="authorize first") as exc_info:
            dispatcher.send(session_id=None, recipients=["client@acme-corp.com"])

        assert exc_info.value.status_code == 401

    def test_provider_401(
        self, mail_settings: Settings, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """Provider 401 maps to Unauthorized."""
        send = gmail_service.users.return_value.messages.return_value.send
        send.return_value.execute.side_effect = _http_error(401, "Invalid Credentials")
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service):
            with pytest.raises(Unauthorized, match="Invalid Credentials"):
                dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])

    def test_provider_other_error(
        self, mail_settings: Settings, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """Other provider errors map to SendFailed."""
        send = gmail_service.users.return_value.messages.return_value.send
        send.return_value.execute.side_effect = _http_error(400, "Invalid To header")
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service):
            with pytest.raises(SendFailed, match="Invalid To header") as exc_info:
                dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])

        assert exc_info.value.status_code == 500

    def test_refresh_failure(
        self, mail_settings: Settings, identity_store: MagicMock, gmail_service: MagicMock
    ) -> None:
        """Revoked refresh token maps to Unauthorized."""
        send = gmail_service.users.return_value.messages.return_value.send
        send.return_value.execute.side_effect = RefreshError("invalid_grant")
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with patch.object(dispatcher, "_gmail_service", return_value=gmail_service):
            with pytest.raises(Unauthorized):
                dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])

    def test_incomplete_stored_token(
        self, mail_settings: Settings, identity_store: MagicMock
    ) -> None:
        """Token set missing refresh fields cannot build credentials."""
        identity_store.get_token.return_value = ("owner@studionine.com", {"token": "only"})
        dispatcher = GmailDispatcher(mail_settings, identity_store)

        with pytest.raises(Unauthorized, match="incomplete"):
            dispatcher.send(session_id="sess-1", recipients=["client@acme-corp.com"])
