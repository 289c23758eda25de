"""
auth/captcha.py -- Human-verification collaborator (Cloudflare Turnstile).

Contract used by the lifecycle service:
    await verifier.verify(token)   # returns None on pass, raises VerificationFailed

TurnstileVerifier POSTs the token to the siteverify endpoint with requests.
The call is blocking, so it runs on a worker thread, and it is bounded by
Settings.external_timeout_seconds.

A network failure is reported as VerificationFailed, never as a pass: the
check guards OTP mail dispatch, so failing closed is the safe default.

Dev mode: with no TURNSTILE_SECRET_KEY and DEBUG=true every token passes and a
warning is logged. Without DEBUG a missing secret fails every check.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import requests

from auth.errors import VerificationFailed
from core.config import Settings

logger = logging.getLogger("authcore.auth.captcha")

# Shared session for connection pooling; siteverify never redirects.
_session = requests.Session()
_session.max_redirects = 3


class HumanVerifier(Protocol):
    async def verify(self, token: str) -> None: ...


class TurnstileVerifier:
    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.secret_key = settings.turnstile_secret_key
        self.verify_url = settings.turnstile_verify_url
        self.timeout = settings.external_timeout_seconds
        self.debug = settings.debug
        self._session = session or _session

    async def verify(self, token: str) -> None:
        if not self.secret_key:
            if self.debug:
                logger.warning("TURNSTILE_SECRET_KEY not set -- human verification skipped (DEBUG)")
                return
            raise VerificationFailed("Human verification is not configured.")
        if not token:
            raise VerificationFailed()
        success, error_codes = await asyncio.to_thread(self._siteverify, token)
        if not success:
            logger.info("Turnstile rejected token: %s", ",".join(error_codes) or "no error codes")
            raise VerificationFailed(detail={"error_codes": error_codes})

    def _siteverify(self, token: str) -> tuple[bool, list[str]]:
        try:
            resp = self._session.post(
                self.verify_url,
                data={"secret": self.secret_key, "response": token},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Turnstile siteverify call failed: %s", e)
            return False, ["siteverify-unavailable"]
        return bool(body.get("success")), list(body.get("error-codes", []))
