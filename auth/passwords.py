"""
auth/passwords.py -- One-way password derivation and verification.

bcrypt is used directly (no passlib wrapper). Its salted, tunable cost makes
brute-forcing a stolen hash expensive, and checkpw compares in constant time
with respect to the secret.

The cost factor comes from Settings.bcrypt_rounds (12 in production). The
_DUMMY_HASH constant enables timing equalization in the login flow: an
unknown username still pays for one bcrypt verification, so response time
does not reveal whether the account exists.

Neither the plaintext nor the hash is ever logged from this module.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()

# bcrypt only reads the first 72 bytes of its input. Longer passwords are
# refused at registration rather than silently truncated.
MAX_PASSWORD_BYTES = 72


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError for passwords over 72 bytes; callers check
    password_too_long() first.
    """
    if password_too_long(plain):
        raise ValueError("password exceeds the bcrypt input limit")
    salt = bcrypt.gensalt(rounds=rounds or _settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Malformed hashes and over-long inputs count as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("bankauth_timing_dummy")


def burn_verification(plain: str) -> None:
    """Run one bcrypt verification against the dummy hash and discard the result."""
    verify_password(plain, _DUMMY_HASH)
