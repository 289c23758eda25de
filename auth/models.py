"""
auth/models.py -- Domain dataclasses and enums for the auth core.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these types only own shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class AuthRole(str, Enum):
    USER = "user"
    ADMIN = "admin"
    MANAGER = "manager"
    SERVICE = "service"


class ResultCode(str, Enum):
    """Non-error outcomes of OTP-dispatching operations. Stable wire values."""

    OTP_SENT = "OTP_SENT"
    NEW_OTP_SENT = "NEW_OTP_SENT"
    OTP_STILL_VALID = "OTP_STILL_VALID"


@dataclass
class Account:
    """The persisted identity record.

    hashed_password is None for federated-only accounts (they never set a
    local password). otp and otp_expires_at are always written and cleared
    together by the store -- never one without the other.

    State derivation:
      no row                      -> Unregistered
      is_email_verified is False  -> PendingVerification
      is_email_verified is True   -> Verified
    is_active is the operator kill switch and gates every flow first.
    """

    email: str
    id: str | None = None
    hashed_password: str | None = None
    full_name: str | None = None
    phone: str | None = None
    gender: str | None = None  # "male", "female", "other"
    address: str | None = None
    is_active: bool = True
    is_email_verified: bool = False
    otp: str | None = None
    otp_expires_at: datetime | None = None  # timezone-aware UTC
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Short-lived access token + long-lived refresh token. Never persisted."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthSession:
    """Result of every token-issuing operation: who signed in, plus their tokens."""

    account: Account
    tokens: TokenPair
    role: AuthRole = AuthRole.USER


@dataclass(frozen=True)
class SignupOutcome:
    """Result of an OTP-dispatching operation (no tokens issued)."""

    code: ResultCode
    message: str


@dataclass(frozen=True)
class ExternalIdentity:
    """What the external identity provider vouches for.

    email has already been confirmed as verified by the provider; callers may
    trust it without an OTP step.
    """

    email: str
    subject: str | None = None
    display_name: str | None = None
    phone: str | None = None
