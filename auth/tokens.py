"""
auth/tokens.py -- Password hashing, session token, and cookie utilities.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The work factor comes
       from Settings.bcrypt_rounds so tests can run with a cheap cost while
       production keeps the default of 12.

  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The
       browser holds the raw token; the session store keys rows by
       HMAC-SHA256(SECRET_KEY, token), so a leaked sessions table cannot be
       replayed as cookies without also knowing SECRET_KEY.

  Cookies: httpOnly, SameSite=Lax, Secure when SECURE_COOKIES=true, and
       max_age equal to the session TTL so cookie and server row expire
       together.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

import bcrypt

from core.config import get_settings

logger = logging.getLogger("userportal.auth")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt only looks at the first 72 bytes; longer inputs are truncated
    explicitly so bcrypt 4.x does not reject them.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        # Malformed stored hash: treat as a mismatch, never as a match.
        logger.warning("Stored password hash could not be parsed")
        return False


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def generate_session_token() -> str:
    """Return a new opaque session token for the client cookie."""
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, token) as hex -- the session store key."""
    return hmac.new(
        _settings.secret_key.encode(),
        token.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response."""
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name, httponly=True, samesite="lax")
