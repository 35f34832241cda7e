"""Mail session and OAuth state cookie helpers.

The session cookie carries only an opaque session id; tokens stay server-side
in the identity store. It lives for about a year while identities exist and is
cut to a few minutes once the last one is removed.

The state cookie ties an OAuth callback to the browser that asked for consent.
"""

import secrets

from fastapi import Request, Response

from invoicing.mail.identity_store import new_session_id
from invoicing.shared.config import Settings
from invoicing.shared.errors import ValidationError


def read_session_id(request: Request, settings: Settings) -> str | None:
    value = request.cookies.get(settings.session_cookie_name)
    return value or None


def ensure_session_id(request: Request, settings: Settings) -> str:
    """Existing session id from the cookie, or a freshly generated one."""
    return read_session_id(request, settings) or new_session_id()


def set_session_cookie(
    response: Response, settings: Settings, session_id: str, remaining: int = 1
) -> None:
    """Write the session cookie; shortened when no identity remains."""
    max_age = (
        settings.session_cookie_max_age if remaining > 0 else settings.session_cookie_cleared_max_age
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_id if remaining > 0 else "",
        max_age=max_age,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
    )


def set_oauth_state_cookie(response: Response, settings: Settings, state: str) -> None:
    response.set_cookie(
        key=settings.oauth_state_cookie_name,
        value=state,
        max_age=settings.oauth_state_max_age,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
    )


def verify_oauth_state(request: Request, settings: Settings, state: str | None) -> None:
    """Check the callback state against the one issued to this browser.

    Raises:
        ValidationError: If either value is missing or they differ
    """
    expected = request.cookies.get(settings.oauth_state_cookie_name)
    if not state or not expected or not secrets.compare_digest(
        state.encode(), expected.encode()
    ):
        raise ValidationError("Invalid OAuth state")


def clear_oauth_state_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.oauth_state_cookie_name,
        path="/",
        secure=settings.secure_cookies,
        httponly=True,
        samesite="lax",
    )
