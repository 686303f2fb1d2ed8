"""
auth/tokens.py -- Signed, time-bound identity assertions (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (the user id as a string, as RFC 7519 requires), user_id,
       username, iat and exp. Verification returns None on any failure,
       expiry included -- the route layer turns that into a 401.

  SECRET_KEY: sourced from core.config.get_settings() once at module load.
       Rotating it invalidates every outstanding token.

  Lifetime: Settings.token_expire_seconds (24 hours by default). Callers may
       pass expire_seconds to override it for a single token.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import UserCredential

_settings = get_settings()

_ALGORITHM = "HS256"


def issue_token(user: UserCredential, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for a verified user record.

    Args:
        user:           A persisted UserCredential (id must be set).
        expire_seconds: Token lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    if user.id is None:
        raise ValueError("cannot issue a token for an unsaved user")
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user.id),
        "user_id": user.id,
        "username": user.username,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any invalid
    or expired token is treated as unauthenticated.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "username" not in payload:
        return None
    return payload
