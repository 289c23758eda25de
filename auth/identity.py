"""
auth/identity.py -- External identity provider collaborator (federated signup).

Contract used by the lifecycle service:
    identity = await provider.introspect(external_token)
    # -> ExternalIdentity(email, subject, display_name, phone)
    # raises InvalidExternalToken

GoogleIdentityProvider takes the OAuth access token the client obtained from
Google and asks the OpenID Connect userinfo endpoint who it belongs to. The
call goes through authlib's AsyncOAuth2Client (an httpx.AsyncClient that
attaches the bearer token), bounded by Settings.external_timeout_seconds.

Security notes:
  [H1] Email verification is mandatory. The provider must assert
       email_verified=true; an unverified address could belong to someone
       else, and the lifecycle service trusts this email without an OTP step.
       Providers that omit email_verified are treated as unverified.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from authlib.integrations.base_client.errors import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client

from auth.errors import InvalidExternalToken
from auth.models import ExternalIdentity
from core.config import Settings

logger = logging.getLogger("authcore.auth.identity")


class IdentityProvider(Protocol):
    async def introspect(self, external_token: str) -> ExternalIdentity: ...


class GoogleIdentityProvider:
    def __init__(self, settings: Settings) -> None:
        self.client_id = settings.google_client_id or None
        self.client_secret = settings.google_client_secret or None
        self.userinfo_url = settings.google_userinfo_url
        self.timeout = settings.external_timeout_seconds

    async def introspect(self, external_token: str) -> ExternalIdentity:
        if not external_token:
            raise InvalidExternalToken("External token is missing.")
        userinfo = await self._fetch_userinfo(external_token)
        return parse_userinfo(userinfo, provider="google")

    async def _fetch_userinfo(self, external_token: str) -> dict:
        token = {"access_token": external_token, "token_type": "Bearer"}
        try:
            async with AsyncOAuth2Client(
                client_id=self.client_id,
                client_secret=self.client_secret,
                token=token,
                timeout=self.timeout,
            ) as client:
                resp = await client.get(self.userinfo_url)
        except (httpx.HTTPError, OAuthError) as exc:
            logger.warning("Identity provider call failed: %s", exc)
            raise InvalidExternalToken("Identity provider is unreachable.") from exc

        if resp.status_code in (400, 401, 403):
            raise InvalidExternalToken()
        try:
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPStatusError, ValueError) as exc:
            logger.warning("Identity provider returned an unusable response: %s", exc)
            raise InvalidExternalToken("Identity provider returned an unusable response.") from exc


def parse_userinfo(userinfo: dict, provider: str) -> ExternalIdentity:
    """Normalize an OIDC userinfo document into an ExternalIdentity [H1]."""
    if not userinfo:
        raise InvalidExternalToken(f"{provider}: empty userinfo response")

    verified = userinfo.get("email_verified", False)
    # Some providers send the flag as the string "true".
    if isinstance(verified, str):
        verified = verified.lower() == "true"
    if not verified:
        raise InvalidExternalToken(f"{provider}: email is not verified by the provider")

    email = userinfo.get("email")
    if not email:
        raise InvalidExternalToken(f"{provider}: no email claim in userinfo")

    return ExternalIdentity(
        email=email,
        subject=userinfo.get("sub"),
        display_name=userinfo.get("name"),
        phone=userinfo.get("phone_number"),
    )
