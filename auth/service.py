"""
auth/service.py -- Account lifecycle service.

Orchestrates every account flow by composing the store, the credential
engine, the OTP manager, the token issuer, the spam filter and the external
collaborators (mail sender, human verifier, identity provider).

Account states:

    Unregistered --signup--> PendingVerification --verify_otp--> Verified
         |                                        \--forgot_password--/
         \----------------signup_federated----------------------------/

is_active is orthogonal and gates every flow before any other check.

Outcomes:
  - token-issuing flows return AuthSession (account + TokenPair)
  - OTP-dispatching flows return SignupOutcome with a stable ResultCode
  - failures raise one of the AuthError kinds in auth/errors.py

Mail is fire-and-forget. The OTP is committed before dispatch, so a failed
send is logged and the user can ask for a resend; it never fails the request.
Outstanding sends are tracked so drain() can await them at shutdown.

No operation retries anything. Partial state from an abandoned request (row
created, OTP issued) stays committed and is picked up by the
PendingVerification branch of the next signup.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError

from auth.captcha import HumanVerifier
from auth.errors import AccountInactive, EmailNotVerified, InvalidCredentials, InvalidRefreshToken, SpamEmail
from auth.identity import IdentityProvider
from auth.mail import MailSender, redact_email
from auth.models import Account, AuthRole, AuthSession, ResultCode, SignupOutcome
from auth.otp import OtpManager
from auth.passwords import hash_password_async, verify_password_async
from auth.spam import SpamFilter
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import Settings

logger = logging.getLogger("authcore.auth.service")

_OTP_SUBJECTS = {
    "en": "New OTP Code",
    "vi": "Mã OTP mới",
}
_DEFAULT_LANG = "vi"


def account_claims(account: Account) -> dict:
    """Profile claims embedded in both tokens."""
    return {
        "id": account.id,
        "email": account.email,
        "full_name": account.full_name,
        "phone": account.phone,
        "gender": account.gender,
        "address": account.address,
    }


class AccountService:
    def __init__(
        self,
        *,
        store: AccountStore,
        settings: Settings,
        otp: OtpManager,
        tokens: TokenIssuer,
        spam_filter: SpamFilter,
        mail: MailSender,
        human_verifier: HumanVerifier,
        identity_provider: IdentityProvider,
    ) -> None:
        self.store = store
        self.settings = settings
        self.otp = otp
        self.tokens = tokens
        self.spam_filter = spam_filter
        self.mail = mail
        self.human_verifier = human_verifier
        self.identity_provider = identity_provider
        self._pending_mail: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _session_for(self, account: Account, role: AuthRole = AuthRole.USER) -> AuthSession:
        pair = await self.tokens.issue_pair(account_claims(account), role)
        return AuthSession(account=account, tokens=pair, role=role)

    def _otp_mail_variables(self, email: str, code: str, lang: str) -> dict:
        return {
            "otp": code,
            "lang": lang,
            "email": quote(email, safe=""),
            "website": self.settings.info_website,
            "support": {
                "phone": self.settings.info_phone,
                "zalo": self.settings.info_zalo,
                "email": self.settings.info_support_email,
            },
        }

    def _dispatch_otp(self, email: str, code: str, lang: str) -> None:
        """Schedule OTP delivery without waiting for it."""
        lang = lang if lang in _OTP_SUBJECTS else _DEFAULT_LANG
        subject = f"{self.settings.brand_name} - {_OTP_SUBJECTS[lang]}"
        task = asyncio.create_task(
            self.mail.send(email, subject, f"signup_otp_{lang}", self._otp_mail_variables(email, code, lang))
        )
        self._pending_mail.add(task)
        task.add_done_callback(self._mail_done)

    def _mail_done(self, task: asyncio.Task) -> None:
        self._pending_mail.discard(task)
        if task.cancelled():
            logger.warning("OTP mail dispatch was cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error("OTP mail dispatch failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for every scheduled mail dispatch to finish."""
        if self._pending_mail:
            await asyncio.gather(*list(self._pending_mail), return_exceptions=True)

    # ------------------------------------------------------------------
    # Signup / verification
    # ------------------------------------------------------------------

    async def signup(
        self,
        email: str,
        password: str,
        full_name: str | None = None,
        phone: str | None = None,
        lang: str = _DEFAULT_LANG,
    ) -> SignupOutcome | AuthSession:
        """Password signup.

        Existing verified accounts are treated as a login attempt. Existing
        pending accounts get OTP_STILL_VALID (no mail) while their code is
        live, or a fresh code and NEW_OTP_SENT once it has expired.
        """
        existing = self.store.get_by_email(email)
        if existing is not None:
            return await self._signup_existing(existing, password, lang)

        if self.spam_filter.is_spam_email(email):
            logger.info("Signup rejected by spam filter: %s", redact_email(email))
            raise SpamEmail()

        hashed = await hash_password_async(password, self.settings.bcrypt_rounds)
        code, expires_at = self.otp.new_code()
        try:
            self.store.create_account(
                Account(
                    email=email,
                    hashed_password=hashed,
                    full_name=full_name,
                    phone=phone,
                    is_email_verified=False,
                    otp=code,
                    otp_expires_at=expires_at,
                )
            )
        except IntegrityError:
            # A concurrent signup created the row first; continue as a retry.
            existing = self.store.get_by_email(email)
            if existing is None:
                raise
            return await self._signup_existing(existing, password, lang)

        logger.info("Account created, pending verification: %s", redact_email(email))
        self._dispatch_otp(email, code, lang)
        return SignupOutcome(code=ResultCode.OTP_SENT, message="OTP sent to email.")

    async def _signup_existing(self, account: Account, password: str, lang: str) -> SignupOutcome | AuthSession:
        if not account.is_active:
            raise AccountInactive()

        if account.is_email_verified:
            if not await verify_password_async(password, account.hashed_password):
                raise InvalidCredentials()
            return await self._session_for(account)

        if self.otp.is_pending(account):
            return SignupOutcome(
                code=ResultCode.OTP_STILL_VALID,
                message="The previous OTP is still valid. Check your inbox.",
            )

        code = self.otp.get_or_create(account.email)
        self._dispatch_otp(account.email, code, lang)
        return SignupOutcome(code=ResultCode.NEW_OTP_SENT, message="A new OTP has been sent to your email.")

    async def verify_otp(self, email: str, code: str) -> AuthSession:
        """PendingVerification -> Verified, then sign the user in."""
        account = self.otp.verify(email, code)
        return await self._session_for(account)

    async def request_email_otp(self, email: str, human_check_token: str, lang: str = _DEFAULT_LANG) -> SignupOutcome:
        """Send (or re-send) the account's OTP after a passed human check.

        Used for password reset and for re-sending outside the signup flow.
        """
        await self.human_verifier.verify(human_check_token)
        code = self.otp.get_or_create(email)
        self._dispatch_otp(email, code, lang)
        return SignupOutcome(code=ResultCode.OTP_SENT, message="OTP sent to email.")

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> AuthSession:
        """Password login.

        Unknown email, federated-only account and wrong password all raise
        InvalidCredentials, after the same bcrypt cost.
        """
        account = self.store.get_by_email(email)
        if account is not None and not account.is_active:
            raise AccountInactive()
        if account is None or not account.hashed_password:
            await verify_password_async(password, None)
            raise InvalidCredentials()
        if not account.is_email_verified:
            raise EmailNotVerified()
        if not await verify_password_async(password, account.hashed_password):
            raise InvalidCredentials()
        return await self._session_for(account)

    async def signup_federated(self, external_token: str) -> AuthSession:
        """Sign up or sign in with a provider-verified email. No OTP step."""
        identity = await self.identity_provider.introspect(external_token)
        account = self.store.get_by_email(identity.email)

        if account is not None:
            if not account.is_active:
                raise AccountInactive()
            if not account.is_email_verified:
                self.store.mark_verified(account.id)
                account = self.store.get_by_id(account.id)
                logger.info("Pending account verified by identity provider: %s", redact_email(identity.email))
            return await self._session_for(account)

        try:
            account = self.store.create_account(
                Account(
                    email=identity.email,
                    full_name=identity.display_name,
                    phone=identity.phone,
                    is_email_verified=True,
                )
            )
            logger.info("Federated account created: %s", redact_email(identity.email))
        except IntegrityError:
            account = self.store.get_by_email(identity.email)
            if account is None:
                raise
            if not account.is_active:
                raise AccountInactive()
            if not account.is_email_verified:
                self.store.mark_verified(account.id)
                account = self.store.get_by_id(account.id)
        return await self._session_for(account)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str, code: str, new_password: str) -> AuthSession:
        """Set a new password with an emailed OTP, then sign the user in."""
        # Reject bad codes before paying for a bcrypt hash; reset_password()
        # re-checks and applies the change with a conditional UPDATE.
        self.otp.check_reset(email, code)
        hashed = await hash_password_async(new_password, self.settings.bcrypt_rounds)
        account = self.otp.reset_password(email, code, hashed)
        return await self._session_for(account)

    # ------------------------------------------------------------------
    # Token renewal
    # ------------------------------------------------------------------

    async def renew_token(self, refresh_token: str | None) -> AuthSession:
        """Exchange a refresh token for a new pair. Stateless, no revocation.

        The account is re-read so a disabled account stops renewing, and the
        new tokens carry the current profile rather than the one embedded in
        the old token. The role is carried over from the refresh token.
        """
        claims = self.tokens.verify_refresh(refresh_token)
        role = self.tokens.role_of(claims)
        account = self.store.get_by_id(claims["id"])
        if account is None:
            raise InvalidRefreshToken("The account for this token no longer exists.")
        if not account.is_active:
            raise AccountInactive()
        return await self._session_for(account, role)

    async def auto_login(self, refresh_token: str | None) -> AuthSession:
        """Same policy as renew_token(); a separate name for the client's app-start call."""
        return await self.renew_token(refresh_token)
