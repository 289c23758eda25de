"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credentials are recognised:
  1. Authorization: Bearer <access token> -- every signed-in client.
  2. X-Service-Key header -- internal services calling routes that allow the
     "service" role. Compared in constant time against Settings.service_key.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() wraps it and raises HTTP 401 if unauthenticated.
require_roles(...) builds a dependency that raises HTTP 403 when the token's
role is not one of the allowed roles.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from auth.models import AuthRole
from auth.tokens import TokenIssuer


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def try_get_current_claims(request: Request) -> dict | None:
    """Return the claims of the request's access token, or None. Never raises."""
    issuer: TokenIssuer = request.app.state.token_issuer
    return issuer.verify_access(_bearer_token(request))


def get_current_claims(request: Request) -> dict:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: dict = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Invalid or expired token."},
        )
    return claims


def _valid_service_key(request: Request) -> bool:
    expected = request.app.state.settings.service_key
    presented = request.headers.get("X-Service-Key", "")
    return bool(expected and presented) and hmac.compare_digest(presented, expected)


def require_roles(*roles: AuthRole):
    """Build a dependency admitting only the given roles.

    AuthRole.SERVICE in `roles` admits callers presenting the service key; a
    wrong service key is a hard 401 rather than a fall-through to the token
    check. Returns the token claims, or {"role": "service"} for service callers.
    """
    allowed = {AuthRole(r).value for r in roles}

    def dependency(request: Request) -> dict:
        if AuthRole.SERVICE.value in allowed and request.headers.get("X-Service-Key"):
            if _valid_service_key(request):
                return {"role": AuthRole.SERVICE.value}
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Invalid or missing service key."},
            )

        claims = get_current_claims(request)
        if claims.get("role") not in allowed:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "forbidden",
                    "message": f"Requires one of the following roles: {', '.join(sorted(allowed))}",
                },
            )
        return claims

    return dependency
