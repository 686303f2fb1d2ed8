"""
api/routes/auth.py -- Login, registration and identity endpoints.

Routes:
  POST /api/auth/login     -- password login; returns token + profile
  POST /api/auth/register  -- create account; returns token + profile (201)
  GET  /api/auth/me        -- profile for the Bearer token holder

Security:
  Every route on this router passes the general rate limit and then the
  stricter authentication limit before the handler runs.
  The handlers do no credential logic themselves: AuthService decides the
  outcome, audits it exactly once and hands back an AuthResult.
  Cache-Control: no-store on every response that may carry a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import enforce_auth_limit, enforce_general_limit
from api.models import AuthResponse, ErrorResponse, LoginRequest, MeResponse, RegisterRequest, UserProfile
from auth.dependencies import get_current_user
from auth.models import DEFAULT_ROLE_NAME, RequestOrigin, UserCredential
from auth.service import AuthResult, AuthService

# Auth policy:
# - POST /api/auth/login:     public, general + auth rate limits
# - POST /api/auth/register:  public, general + auth rate limits
# - GET  /api/auth/me:        requires Bearer token (get_current_user)
router = APIRouter(dependencies=[Depends(enforce_general_limit), Depends(enforce_auth_limit)])


def request_origin(request: Request) -> RequestOrigin:
    return RequestOrigin(
        ip_address=get_remote_address(request),
        user_agent=request.headers.get("user-agent"),
    )


def _to_response(result: AuthResult) -> JSONResponse:
    if result.success:
        content = AuthResponse(
            token=result.token,
            user=UserProfile.from_credential(result.user, result.role_name),
        ).model_dump(by_alias=True)
    else:
        content = ErrorResponse(message=result.message).model_dump()
    resp = JSONResponse(status_code=result.status_code, content=content)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Unknown username and wrong password produce the same 401 body.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username, body.password, request_origin(request))
    return _to_response(result)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with the default role and sign it in."""
    service: AuthService = request.app.state.auth_service
    result = service.register(
        body.username,
        body.email,
        body.password,
        request_origin(request),
        full_name=body.full_name,
        phone_number=body.phone_number,
    )
    return _to_response(result)


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: UserCredential = Depends(get_current_user)) -> JSONResponse:
    """Return the profile of the user the Bearer token was issued to."""
    profile = UserProfile.from_credential(current_user, current_user.role_name or DEFAULT_ROLE_NAME)
    return JSONResponse(content=MeResponse(user=profile).model_dump(by_alias=True))
