"""
API request and response models for the authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field constraints mirror what the mobile and web clients already send:
password 8-20 chars, full name 1-255, phone 10-20, OTP exactly 4 chars,
lang "en" or "vi" (default "vi").
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, StringConstraints

from auth.models import AuthSession, SignupOutcome

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Structural check only: one "@", no whitespace, a dot in the domain. Exact
# deliverability is the mail server's problem.
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# Surrounding whitespace is stripped from identifiers and profile text only.
# Passwords are taken exactly as typed.
_Email = Annotated[str, StringConstraints(strip_whitespace=True, pattern=EMAIL_PATTERN, max_length=255)]
_Otp = Annotated[str, StringConstraints(strip_whitespace=True, min_length=4, max_length=4)]
_FullName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
_Phone = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=20)]

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class LangEnum(str, Enum):
    en = "en"
    vi = "vi"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    email: _Email
    password: str = Field(min_length=8, max_length=20)
    full_name: _FullName
    phone: _Phone
    lang: LangEnum = LangEnum.vi


class SignupOtpRequest(BaseModel):
    email: _Email
    otp: _Otp


class SignupGoogleRequest(BaseModel):
    google_access_token: str = Field(min_length=1)


class LoginRequest(BaseModel):
    email: _Email
    password: str = Field(min_length=1, max_length=255)


class EmailOtpRequest(BaseModel):
    email: _Email
    captcha_token: str = Field(min_length=1)
    lang: LangEnum = LangEnum.vi


class ForgotPasswordRequest(BaseModel):
    email: _Email
    otp: _Otp
    password: str = Field(min_length=8, max_length=20)


class RefreshRequest(BaseModel):
    """Body for renew-token / auto-login. Falls back to the refresh_token cookie when omitted."""

    refresh_token: Optional[str] = None


class AccountActivePatch(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AuthTokenResponse(BaseModel):
    """Account profile plus tokens, returned by every sign-in flow."""

    id: str
    email: str
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int
    full_name: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    role: str

    @classmethod
    def from_session(cls, session: AuthSession, expires_in: int, include_refresh: bool) -> "AuthTokenResponse":
        account = session.account
        return cls(
            id=account.id,
            email=account.email,
            access_token=session.tokens.access_token,
            refresh_token=session.tokens.refresh_token if include_refresh else None,
            expires_in=expires_in,
            full_name=account.full_name,
            phone=account.phone,
            gender=account.gender,
            address=account.address,
            role=session.role.value,
        )


class OtpResultResponse(BaseModel):
    """Non-error result of an OTP-dispatching call. `code` is a stable wire value."""

    code: str
    message: str

    @classmethod
    def from_outcome(cls, outcome: SignupOutcome) -> "OtpResultResponse":
        return cls(code=outcome.code.value, message=outcome.message)


class MeResponse(BaseModel):
    id: str
    email: str
    role: str
    full_name: Optional[str] = None
    phone: Optional[str] = None
    gender: Optional[str] = None
    address: Optional[str] = None


class AccountStatusResponse(BaseModel):
    id: str
    email: str
    is_active: bool
    is_email_verified: bool


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
