"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token identity.

Authorization: Bearer <token> is the only accepted credential. The token is
verified with decode_token() and the user is re-read from the store, so a
token for a since-deactivated account stops working immediately.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
Role checks (ADMIN_ROLE) stay in the routes that need them, so a refused
caller can still be audited before the 403.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because it is part of the dependency injection wiring.
It still does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import UserCredential
from auth.store import CredentialStore
from auth.tokens import decode_token

ADMIN_ROLE = "admin"


def try_get_current_user(request: Request) -> UserCredential | None:
    """Authenticate the request via its Bearer token. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    payload = decode_token(auth_header[7:])
    if payload is None:
        return None
    store: CredentialStore = request.app.state.credential_store
    user = store.find_by_id(payload["user_id"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> UserCredential:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: UserCredential = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user
