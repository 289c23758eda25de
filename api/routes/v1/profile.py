"""
api/routes/v1/profile.py -- Account signup, verification and session endpoints.

Routes:
  POST  /api/v1/profile/signup             -- password signup (OTP_SENT / NEW_OTP_SENT / OTP_STILL_VALID, or tokens)
  POST  /api/v1/profile/signup/otp         -- verify the emailed OTP; returns tokens
  POST  /api/v1/profile/signup/google      -- federated signup/sign-in; returns tokens
  POST  /api/v1/profile/login              -- password login; returns tokens
  POST  /api/v1/profile/email-otp          -- (re)send OTP after a human check
  POST  /api/v1/profile/forgot-password    -- reset password with OTP; returns tokens
  POST  /api/v1/profile/renew-token        -- refresh token -> new pair
  POST  /api/v1/profile/auto-login         -- same policy as renew-token
  GET   /api/v1/profile/me                 -- claims of the bearer access token
  PATCH /api/v1/profile/{account_id}/active -- operator kill switch (admin or service key)

Every token response also sets the refresh token as an httpOnly cookie.
renew-token / auto-login accept the refresh token from the body or, when the
body omits it, from that cookie.

Error mapping lives in api/main.py: AuthError subclasses become
{"error": {"code", "message", "detail"}} with the class's status code.

Security:
  Cache-Control: no-store on every response that carries a token.
  Login and verified-signup share InvalidCredentials for unknown email and
  wrong password (see auth/service.py).
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.models import (
    AccountActivePatch,
    AccountStatusResponse,
    AuthTokenResponse,
    EmailOtpRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MeResponse,
    OtpResultResponse,
    RefreshRequest,
    SignupGoogleRequest,
    SignupOtpRequest,
    SignupRequest,
)
from auth.dependencies import get_current_claims, require_roles
from auth.models import AuthRole, AuthSession, SignupOutcome
from auth.service import AccountService
from auth.store import AccountStore
from auth.tokens import set_refresh_cookie

# Auth policy:
# - all POST routes:                     public -- they are how a client gets credentials
# - GET   /profile/me:                   requires a valid access token
# - PATCH /profile/{account_id}/active:  admin token or X-Service-Key
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> AccountService:
    return request.app.state.account_service


def _token_response(request: Request, session: AuthSession) -> JSONResponse:
    settings = request.app.state.settings
    body = AuthTokenResponse.from_session(
        session,
        expires_in=settings.access_token_expire_seconds,
        include_refresh=settings.refresh_token_in_body,
    )
    resp = JSONResponse(status_code=200, content=body.model_dump())
    set_refresh_cookie(resp, session.tokens.refresh_token, settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _outcome_response(outcome: SignupOutcome) -> JSONResponse:
    return JSONResponse(status_code=200, content=OtpResultResponse.from_outcome(outcome).model_dump())


def _refresh_token_from(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get("refresh_token")


# ---------------------------------------------------------------------------
# Signup and verification
# ---------------------------------------------------------------------------


@router.post("/profile/signup", response_model=OtpResultResponse | AuthTokenResponse)
async def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account pending verification, or sign in an already verified one.

    A verified email with the right password is treated as a login so a user
    who re-submits the signup form is simply signed in.
    """
    result = await _service(request).signup(
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        phone=body.phone,
        lang=body.lang.value,
    )
    if isinstance(result, AuthSession):
        return _token_response(request, result)
    return _outcome_response(result)


@router.post("/profile/signup/otp", response_model=AuthTokenResponse)
async def verify_otp(request: Request, body: SignupOtpRequest) -> JSONResponse:
    """Confirm email ownership with the emailed code and sign the user in."""
    session = await _service(request).verify_otp(body.email, body.otp)
    return _token_response(request, session)


@router.post("/profile/signup/google", response_model=AuthTokenResponse)
async def signup_google(request: Request, body: SignupGoogleRequest) -> JSONResponse:
    """Sign up or sign in with a Google access token. The email is trusted as verified."""
    session = await _service(request).signup_federated(body.google_access_token)
    return _token_response(request, session)


@router.post("/profile/email-otp", response_model=OtpResultResponse)
async def email_otp(request: Request, body: EmailOtpRequest) -> JSONResponse:
    """Send the account's OTP (reusing a live one) after a passed human check."""
    outcome = await _service(request).request_email_otp(body.email, body.captcha_token, body.lang.value)
    return _outcome_response(outcome)


@router.post("/profile/forgot-password", response_model=AuthTokenResponse)
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    session = await _service(request).forgot_password(body.email, body.otp, body.password)
    return _token_response(request, session)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/profile/login", response_model=AuthTokenResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    session = await _service(request).login(body.email, body.password)
    return _token_response(request, session)


@router.post("/profile/renew-token", response_model=AuthTokenResponse)
async def renew_token(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    session = await _service(request).renew_token(_refresh_token_from(request, body))
    return _token_response(request, session)


@router.post("/profile/auto-login", response_model=AuthTokenResponse)
async def auto_login(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Called by clients at start-up to turn a stored refresh token into a session."""
    session = await _service(request).auto_login(_refresh_token_from(request, body))
    return _token_response(request, session)


@router.get("/profile/me", response_model=MeResponse)
async def me(claims: dict = Depends(get_current_claims)) -> MeResponse:
    """Return the identity carried by the current access token."""
    return MeResponse(
        id=claims["id"],
        email=claims["email"],
        role=claims["role"],
        full_name=claims.get("full_name"),
        phone=claims.get("phone"),
        gender=claims.get("gender"),
        address=claims.get("address"),
    )


# ---------------------------------------------------------------------------
# Operator actions
# ---------------------------------------------------------------------------


@router.patch("/profile/{account_id}/active", response_model=AccountStatusResponse)
async def set_account_active(
    request: Request,
    account_id: str,
    body: AccountActivePatch,
    caller: dict = Depends(require_roles(AuthRole.ADMIN, AuthRole.SERVICE)),
) -> AccountStatusResponse:
    """Enable or disable an account. Disabled accounts fail every flow with ACCOUNT_INACTIVE."""
    store: AccountStore = request.app.state.account_store
    if not store.set_active(account_id, body.is_active):
        raise HTTPException(
            status_code=404,
            detail={"code": "ACCOUNT_NOT_FOUND", "message": "Account not found."},
        )
    account = store.get_by_id(account_id)
    return AccountStatusResponse(
        id=account.id,
        email=account.email,
        is_active=account.is_active,
        is_email_verified=account.is_email_verified,
    )
