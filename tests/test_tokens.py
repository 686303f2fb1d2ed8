"""Unit tests for auth/tokens.py and auth/passwords.py.

Covers:
- a token decodes to the same user id and username it was issued for
- expired, tampered and foreign-key tokens decode to None
- bcrypt hash / verify, malformed hashes and the 72-byte input limit
"""

import time
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth.models import UserCredential
from auth.passwords import hash_password, password_too_long, verify_password
from auth.tokens import decode_token, issue_token
from core.config import get_settings


def _user(user_id: int = 7, username: str = "alice") -> UserCredential:
    return UserCredential(id=user_id, username=username, email=f"{username}@example.com", password_hash="x")


class TestTokens:
    def test_round_trip_claims(self):
        payload = decode_token(issue_token(_user()))
        assert payload is not None
        assert payload["sub"] == "7"
        assert payload["user_id"] == 7
        assert payload["username"] == "alice"
        assert payload["exp"] > payload["iat"]

    def test_default_lifetime_from_settings(self):
        payload = decode_token(issue_token(_user()))
        assert payload["exp"] - payload["iat"] == get_settings().token_expire_seconds

    def test_expired_token_rejected(self):
        token = issue_token(_user(), expire_seconds=1)
        assert decode_token(token) is not None
        time.sleep(2.1)
        assert decode_token(token) is None

    def test_tampered_token_rejected(self):
        token = issue_token(_user())
        head, body, sig = token.split(".")
        flipped = sig[:-2] + ("AA" if sig[-2:] != "AA" else "BB")
        assert decode_token(f"{head}.{body}.{flipped}") is None

    def test_token_signed_with_other_key_rejected(self):
        now = datetime.now(timezone.utc)
        forged = jwt.encode(
            {"sub": "7", "user_id": 7, "username": "alice", "exp": now + timedelta(hours=1)},
            "x" * 64,
            algorithm="HS256",
        )
        assert decode_token(forged) is None

    def test_token_missing_identity_claims_rejected(self):
        now = datetime.now(timezone.utc)
        token = jwt.encode({"sub": "7", "exp": now + timedelta(hours=1)}, get_settings().secret_key, algorithm="HS256")
        assert decode_token(token) is None

    def test_garbage_rejected(self):
        assert decode_token("not-a-jwt") is None

    def test_unsaved_user_cannot_get_token(self):
        with pytest.raises(ValueError):
            issue_token(UserCredential(username="x", email="x@example.com", password_hash="x"))


class TestPasswords:
    def test_hash_is_salted_and_verifies(self):
        first = hash_password("s3cret!")
        second = hash_password("s3cret!")
        assert first != second
        assert first.startswith("$2")
        assert "s3cret!" not in first
        assert verify_password("s3cret!", first)
        assert verify_password("s3cret!", second)

    def test_wrong_password_fails(self):
        assert not verify_password("guess", hash_password("s3cret!"))

    def test_malformed_hash_fails_closed(self):
        assert not verify_password("s3cret!", "not-a-bcrypt-hash")

    def test_work_factor_from_settings(self):
        rounds = get_settings().bcrypt_rounds
        assert hash_password("s3cret!").split("$")[2] == f"{rounds:02d}"

    def test_password_length_limit(self):
        assert not password_too_long("a" * 72)
        assert password_too_long("a" * 73)
        assert password_too_long("é" * 37)  # 74 bytes in UTF-8
        with pytest.raises(ValueError):
            hash_password("a" * 73)
