"""
auth/otp.py -- OTP manager: short-lived numeric codes that prove email ownership.

Policy:
  - Codes are Settings.otp_length digits (default 4), each digit drawn
    uniformly with the secrets module. Leading zeros are allowed.
  - A code lives for Settings.otp_ttl_seconds (default 5 minutes).
  - get_or_create() re-issues the SAME code while it is unexpired. A code that
    is already on its way to the user's inbox stays valid when they press
    "resend".
  - A code is consumed by a successful verify() or password reset; the store
    clears it in the same UPDATE that applies the change.

Check order for every operation: account exists -> account active -> code.
(An inactive account short-circuits before any OTP detail is revealed.)

The clock is injectable so expiry can be tested without sleeping.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from auth.errors import AccountInactive, AccountNotFound, InvalidOtp, OtpExpired
from auth.models import Account
from auth.store import AccountStore
from core.config import Settings

logger = logging.getLogger("authcore.auth.otp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_otp(length: int = 4) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


class OtpManager:
    def __init__(
        self,
        store: AccountStore,
        settings: Settings,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.length = settings.otp_length
        self.ttl = timedelta(seconds=settings.otp_ttl_seconds)
        self.now = now

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def new_code(self, previous: str | None = None) -> tuple[str, datetime]:
        """Return a fresh (code, expires_at) pair without persisting it.

        The code never equals `previous`, so a re-issue after expiry always
        sends the user a different code.
        """
        code = generate_otp(self.length)
        while code == previous:
            code = generate_otp(self.length)
        return code, self.now() + self.ttl

    def is_pending(self, account: Account) -> bool:
        """True if the account holds a code that has not expired yet."""
        return bool(account.otp and account.otp_expires_at and account.otp_expires_at > self.now())

    def _load_active(self, email: str) -> Account:
        account = self.store.get_by_email(email)
        if account is None:
            raise AccountNotFound()
        if not account.is_active:
            raise AccountInactive()
        return account

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_or_create(self, email: str) -> str:
        """Return the account's unexpired code, or issue and persist a new one."""
        account = self._load_active(email)
        if self.is_pending(account):
            return account.otp

        code, expires_at = self.new_code(previous=account.otp)
        if self.store.issue_otp(account.id, code, expires_at, self.now()):
            return code

        # Lost the race to a concurrent issuer -- reuse whatever it stored.
        current = self.store.get_by_email(email)
        if current is not None and self.is_pending(current):
            return current.otp
        raise RuntimeError(f"Could not issue OTP for account {account.id}")

    def verify(self, email: str, code: str) -> Account:
        """Consume a matching unexpired code and mark the email verified.

        Raises AccountNotFound, AccountInactive, InvalidOtp (no code stored or
        mismatch) or OtpExpired (match, but past otp_expires_at).
        """
        account = self._load_active(email)
        if not account.otp or account.otp != code:
            raise InvalidOtp()
        now = self.now()
        if account.otp_expires_at is None or account.otp_expires_at <= now:
            raise OtpExpired()
        if not self.store.consume_otp(account.id, code, now):
            # A concurrent request consumed or replaced the code first.
            raise InvalidOtp()
        logger.info("Email verified for account %s", account.id)
        return self.store.get_by_id(account.id)

    def check_reset(self, email: str, code: str) -> Account:
        """Validate a password-reset code without consuming it.

        Expiry is checked before the match here: a stale code gets OtpExpired
        even if it was also mistyped, steering the user to request a new one.
        Unlike verify(), an account with no stored code also gets OtpExpired.
        """
        account = self._load_active(email)
        if account.otp_expires_at is None or account.otp_expires_at <= self.now():
            raise OtpExpired()
        if account.otp != code:
            raise InvalidOtp()
        return account

    def reset_password(self, email: str, code: str, hashed_password: str) -> Account:
        """Consume a code to set a new password hash.

        On success the email is also marked verified -- receiving the code
        proves ownership.
        """
        account = self.check_reset(email, code)
        if not self.store.reset_password_with_otp(account.id, code, hashed_password, self.now()):
            raise InvalidOtp()
        logger.info("Password reset for account %s", account.id)
        return self.store.get_by_id(account.id)
