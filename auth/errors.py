"""
auth/errors.py -- Closed set of domain failure kinds for the auth core.

Every failure the lifecycle service reports is one of the AuthError subclasses
below. Each class carries a stable machine-readable `code` (part of the wire
contract -- clients switch on it) and the HTTP status the API layer maps it to.

Anything that is NOT an AuthError (a storage failure, a signing failure) is an
internal error. The API layer logs those and returns a generic 500, so clients
can tell "you did something wrong" from "the system is broken".

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for auth-core failures mapped to HTTP responses."""

    code: str = "AUTH_ERROR"
    status_code: int = 400
    default_message: str = "Authentication request failed."

    def __init__(self, message: Optional[str] = None, *, detail: Optional[dict] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.detail = detail or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "detail": self.detail}


class AccountNotFound(AuthError):
    code = "ACCOUNT_NOT_FOUND"
    status_code = 404
    default_message = "No account exists for this email."


class AccountInactive(AuthError):
    """Account exists but was disabled by an operator. Checked before anything else."""

    code = "ACCOUNT_INACTIVE"
    status_code = 403
    default_message = "This account has been disabled."


class EmailNotVerified(AuthError):
    code = "EMAIL_NOT_VERIFIED"
    status_code = 403
    default_message = "Email address has not been verified yet."


class InvalidCredentials(AuthError):
    """Bad password OR unknown account during login.

    The two cases share this kind and message so the response does not reveal
    whether an email is registered.
    """

    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password."


class InvalidOtp(AuthError):
    code = "INVALID_OTP"
    status_code = 400
    default_message = "The verification code is incorrect."


class OtpExpired(AuthError):
    code = "OTP_EXPIRED"
    status_code = 400
    default_message = "The verification code has expired. Request a new one."


class SpamEmail(AuthError):
    code = "SPAM_EMAIL"
    status_code = 400
    default_message = "This email address cannot be used to sign up."


class InvalidExternalToken(AuthError):
    code = "INVALID_EXTERNAL_TOKEN"
    status_code = 401
    default_message = "The identity provider rejected the supplied token."


class VerificationFailed(AuthError):
    code = "VERIFICATION_FAILED"
    status_code = 400
    default_message = "Human verification failed."


class InvalidRefreshToken(AuthError):
    code = "INVALID_REFRESH_TOKEN"
    status_code = 401
    default_message = "Refresh token is invalid or expired. Please sign in again."


__all__ = [
    "AuthError",
    "AccountNotFound",
    "AccountInactive",
    "EmailNotVerified",
    "InvalidCredentials",
    "InvalidOtp",
    "OtpExpired",
    "SpamEmail",
    "InvalidExternalToken",
    "VerificationFailed",
    "InvalidRefreshToken",
]
