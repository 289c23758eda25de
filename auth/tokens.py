"""
auth/tokens.py -- Token issuer: access + refresh JWTs and cookie helper.

Security design decisions:
  JWT: python-jose with HS256. Two independent secrets and lifetimes:
       access  -- Settings.jwt_secret,         15 minutes
       refresh -- Settings.jwt_refresh_secret, 7 days
       Each token also carries typ="access" / typ="refresh" and each verify
       path checks it, so a refresh token never validates as an access token
       (or vice versa) even before the signature check fails.

  Claims: {id, email, full_name, phone, gender, address, role, typ, iat, exp}.
       verify_*() strips typ/iat/exp and returns the profile claims + role.

  Failure reporting is deliberately asymmetric:
       verify_access()  returns None on any failure -- the dependency layer
                        turns that into a 401.
       verify_refresh() raises InvalidRefreshToken -- the client must get an
                        explicit "sign in again" signal.

  Renewal is stateless. renew() re-validates the refresh token and mints a
       brand-new pair from its embedded claims. The old refresh token stays
       valid until it expires; there is no revocation store.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidRefreshToken
from auth.models import AuthRole, TokenPair
from core.config import Settings

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"

_ACCESS = "access"
_REFRESH = "refresh"

# Profile claims carried by both tokens, in addition to role.
CLAIM_KEYS = ("id", "email", "full_name", "phone", "gender", "address")
_RESERVED = ("typ", "iat", "exp")


class TokenIssuer:
    """Mints and verifies access/refresh token pairs.

    Usage:
        issuer = TokenIssuer(settings)
        pair = await issuer.issue_pair({"id": "...", "email": "..."})
        claims = issuer.verify_access(pair.access_token)
    """

    def __init__(self, settings: Settings) -> None:
        self._access_secret = settings.jwt_secret
        self._refresh_secret = settings.jwt_refresh_secret
        self.access_ttl = timedelta(seconds=settings.access_token_expire_seconds)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_expire_seconds)

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def _encode(self, claims: dict, role: AuthRole | str, typ: str) -> str:
        if typ == _ACCESS:
            secret, ttl = self._access_secret, self.access_ttl
        else:
            secret, ttl = self._refresh_secret, self.refresh_ttl
        now = datetime.now(timezone.utc)
        payload = {key: claims.get(key) for key in CLAIM_KEYS}
        payload.update(
            {
                "role": AuthRole(role).value,
                "typ": typ,
                "iat": now,
                "exp": now + ttl,
            }
        )
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    async def issue_pair(self, claims: dict, role: AuthRole | str = AuthRole.USER) -> TokenPair:
        """Sign the access and refresh tokens concurrently.

        The two signatures share no state, so they run side by side on worker
        threads.
        """
        access_token, refresh_token = await asyncio.gather(
            asyncio.to_thread(self._encode, claims, role, _ACCESS),
            asyncio.to_thread(self._encode, claims, role, _REFRESH),
        )
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def _decode(self, token: str, typ: str) -> dict:
        secret = self._access_secret if typ == _ACCESS else self._refresh_secret
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        if payload.get("typ") != typ:
            raise JWTError(f"expected a {typ} token")
        if not payload.get("id") or not payload.get("email") or "role" not in payload:
            raise JWTError("token is missing identity claims")
        return {key: value for key, value in payload.items() if key not in _RESERVED}

    def verify_access(self, token: str | None) -> dict | None:
        """Return the claims of a valid access token, or None on any failure."""
        if not token:
            return None
        try:
            return self._decode(token, _ACCESS)
        except JWTError:
            return None

    def verify_refresh(self, token: str | None) -> dict:
        """Return the claims of a valid refresh token.

        Raises InvalidRefreshToken on a bad signature, expiry, wrong token type
        or missing claims.
        """
        if not token:
            raise InvalidRefreshToken("Refresh token is missing.")
        try:
            return self._decode(token, _REFRESH)
        except JWTError as exc:
            logger.info("Refresh token rejected: %s", exc)
            raise InvalidRefreshToken() from exc

    def role_of(self, claims: dict) -> AuthRole:
        """Return the role embedded in verified refresh claims."""
        try:
            return AuthRole(claims.get("role", AuthRole.USER.value))
        except ValueError as exc:
            raise InvalidRefreshToken("Refresh token carries an unknown role.") from exc

    async def renew(self, refresh_token: str | None) -> tuple[dict, TokenPair]:
        """Validate a refresh token and mint a new pair from its claims.

        Returns (claims, new_pair). The presented refresh token is not revoked.
        """
        claims = self.verify_refresh(refresh_token)
        pair = await self.issue_pair(claims, self.role_of(claims))
        return claims, pair


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str, settings: Settings) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="none" + secure: the SPA is served from another origin and must
        still send the cookie to /renew-token and /auto-login. Browsers refuse
        samesite=none without secure, so plain-HTTP dev falls back to "lax".
    max_age: matches the refresh token lifetime so both expire together.
    """
    response.set_cookie(
        "refresh_token",
        value=token,
        httponly=True,
        samesite="none" if settings.secure_cookies else "lax",
        secure=settings.secure_cookies,
        path="/",
        max_age=settings.refresh_token_expire_seconds,
    )
