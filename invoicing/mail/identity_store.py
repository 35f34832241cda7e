"""Server-side storage of authorized mail identities.

Each browser session is identified by an opaque random id held in a cookie.
OAuth token sets are stored against ``(session_id, email)`` and encrypted at
rest with Fernet, so neither the cookie nor the database row exposes them.

Based on the cryptography documentation:
https://cryptography.io/en/latest/fernet/
"""

import json
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from invoicing.shared.errors import ConfigError, StorageError
from invoicing.storage.database import Base

logger = logging.getLogger(__name__)


class MailIdentity(Base):
    __tablename__ = "mail_identities"
    __table_args__ = (UniqueConstraint("session_id", "email", name="uq_mail_identity_session_email"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(128), nullable=False, index=True)
    email = Column(String(320), nullable=False)
    encrypted_token = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityStore:
    """Encrypted token storage keyed by session and email."""

    def __init__(
        self,
        session_factory: sessionmaker,
        encryption_key: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize identity store.

        Args:
            session_factory: Session factory bound to the database engine
            encryption_key: Fernet key (urlsafe base64, 32 bytes); may be empty,
                in which case every token operation raises ConfigError
            clock: Source of created/updated timestamps
        """
        self._session_factory = session_factory
        self._encryption_key = encryption_key
        self._fernet: Fernet | None = None
        self._clock = clock

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            if not self._encryption_key:
                raise ConfigError(
                    "Token encryption key not configured. "
                    "Set APP_TOKEN_ENCRYPTION_KEY environment variable."
                )
            try:
                self._fernet = Fernet(self._encryption_key.encode("ascii"))
            except (ValueError, UnicodeEncodeError) as e:
                raise ConfigError(f"Invalid token encryption key: {e}") from e
        return self._fernet

    def save(self, session_id: str, email: str, token: dict[str, Any]) -> None:
        """Store (or replace) the token set for an email in a session."""
        ciphertext = self._get_fernet().encrypt(json.dumps(token).encode("utf-8")).decode("ascii")
        now = self._clock()
        try:
            with self._session_factory() as session:
                row = session.scalars(
                    select(MailIdentity).where(
                        MailIdentity.session_id == session_id, MailIdentity.email == email
                    )
                ).one_or_none()
                if row is None:
                    row = MailIdentity(session_id=session_id, email=email, created_at=now)
                    session.add(row)
                row.encrypted_token = ciphertext
                row.updated_at = now
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to store mail identity: {e}")
            raise StorageError(f"Failed to store mail identity: {e}") from e
        logger.info(f"Stored authorized mail identity {email}")

    def list_emails(self, session_id: str | None) -> list[str]:
        """Authorized emails for a session, oldest first."""
        if not session_id:
            return []
        try:
            with self._session_factory() as session:
                return list(
                    session.scalars(
                        select(MailIdentity.email)
                        .where(MailIdentity.session_id == session_id)
                        .order_by(MailIdentity.created_at, MailIdentity.id)
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list mail identities: {e}") from e

    def get_token(
        self, session_id: str | None, email: str | None = None
    ) -> tuple[str, dict[str, Any]] | None:
        """Token set for the requested email, or the session's first identity.

        Args:
            session_id: Opaque session id from the cookie
            email: Preferred sender; falls back to the oldest identity when
                absent or not authorized in this session

        Returns:
            ``(email, token)`` or None when the session has no identity
        """
        if not session_id:
            return None
        try:
            with self._session_factory() as session:
                rows = list(
                    session.scalars(
                        select(MailIdentity)
                        .where(MailIdentity.session_id == session_id)
                        .order_by(MailIdentity.created_at, MailIdentity.id)
                    )
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read mail identities: {e}") from e
        if not rows:
            return None

        chosen = next((row for row in rows if email and row.email == email), rows[0])
        try:
            plaintext = self._get_fernet().decrypt(chosen.encrypted_token.encode("ascii"))
        except InvalidToken as e:
            # Key rotated or row tampered with; the identity must be re-authorized
            logger.warning(f"Could not decrypt token for {chosen.email}")
            raise ConfigError("Stored mail token cannot be decrypted; authorize again") from e
        return chosen.email, json.loads(plaintext)

    def delete(self, session_id: str | None, email: str) -> int:
        """Remove one identity and return how many remain in the session."""
        if not session_id:
            return 0
        try:
            with self._session_factory() as session:
                session.execute(
                    delete(MailIdentity).where(
                        MailIdentity.session_id == session_id, MailIdentity.email == email
                    )
                )
                session.commit()
                remaining = session.scalar(
                    select(func.count())
                    .select_from(MailIdentity)
                    .where(MailIdentity.session_id == session_id)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete mail identity: {e}") from e
        logger.info(f"Removed mail identity {email}")
        return int(remaining or 0)
