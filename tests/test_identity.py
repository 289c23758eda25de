"""Unit tests for the external collaborators: auth/identity.py and auth/captcha.py.

No network: the identity provider's HTTP call is replaced on the instance,
and the Turnstile verifier gets a MagicMock requests session.
"""

from unittest.mock import MagicMock

import pytest
import requests

from auth.captcha import TurnstileVerifier
from auth.errors import InvalidExternalToken, VerificationFailed
from auth.identity import GoogleIdentityProvider, parse_userinfo
from tests.conftest import make_settings

# ---------------------------------------------------------------------------
# parse_userinfo
# ---------------------------------------------------------------------------


class TestParseUserinfo:
    def test_maps_fields(self):
        identity = parse_userinfo(
            {
                "sub": "1234",
                "email": "g@x.com",
                "email_verified": True,
                "name": "Gee",
                "phone_number": "+15551112222",
            },
            provider="google",
        )
        assert identity.email == "g@x.com"
        assert identity.subject == "1234"
        assert identity.display_name == "Gee"
        assert identity.phone == "+15551112222"

    def test_string_true_is_accepted(self):
        assert parse_userinfo({"email": "g@x.com", "email_verified": "true"}, "google").email == "g@x.com"

    @pytest.mark.parametrize("verified", [False, "false", None])
    def test_unverified_email_rejected(self, verified):
        with pytest.raises(InvalidExternalToken):
            parse_userinfo({"email": "g@x.com", "email_verified": verified}, "google")

    def test_missing_flag_is_unverified(self):
        with pytest.raises(InvalidExternalToken):
            parse_userinfo({"email": "g@x.com"}, "google")

    def test_missing_email_rejected(self):
        with pytest.raises(InvalidExternalToken):
            parse_userinfo({"email_verified": True}, "google")

    def test_empty_document_rejected(self):
        with pytest.raises(InvalidExternalToken):
            parse_userinfo({}, "google")


class TestGoogleIdentityProvider:
    async def test_introspect_uses_userinfo(self):
        provider = GoogleIdentityProvider(make_settings())
        seen = []

        async def fake_fetch(token):
            seen.append(token)
            return {"email": "g@x.com", "email_verified": True, "sub": "1"}

        provider._fetch_userinfo = fake_fetch
        identity = await provider.introspect("ya29.token")
        assert seen == ["ya29.token"]
        assert identity.email == "g@x.com"

    async def test_empty_token_rejected_without_call(self):
        provider = GoogleIdentityProvider(make_settings())
        provider._fetch_userinfo = MagicMock(side_effect=AssertionError("should not be called"))
        with pytest.raises(InvalidExternalToken):
            await provider.introspect("")


# ---------------------------------------------------------------------------
# TurnstileVerifier
# ---------------------------------------------------------------------------


def _session_returning(body: dict) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    resp = MagicMock()
    resp.json.return_value = body
    resp.raise_for_status.return_value = None
    session.post.return_value = resp
    return session


class TestTurnstileVerifier:
    async def test_pass(self):
        session = _session_returning({"success": True})
        verifier = TurnstileVerifier(make_settings(turnstile_secret_key="sekrit"), session=session)
        await verifier.verify("tok")
        _, kwargs = session.post.call_args
        assert kwargs["data"] == {"secret": "sekrit", "response": "tok"}
        assert kwargs["timeout"] == 10.0

    async def test_rejection_carries_error_codes(self):
        session = _session_returning({"success": False, "error-codes": ["invalid-input-response"]})
        verifier = TurnstileVerifier(make_settings(turnstile_secret_key="sekrit"), session=session)
        with pytest.raises(VerificationFailed) as exc_info:
            await verifier.verify("tok")
        assert exc_info.value.detail == {"error_codes": ["invalid-input-response"]}

    async def test_network_failure_fails_closed(self):
        session = MagicMock(spec=requests.Session)
        session.post.side_effect = requests.ConnectionError("down")
        verifier = TurnstileVerifier(make_settings(turnstile_secret_key="sekrit"), session=session)
        with pytest.raises(VerificationFailed):
            await verifier.verify("tok")

    async def test_empty_token(self):
        session = _session_returning({"success": True})
        verifier = TurnstileVerifier(make_settings(turnstile_secret_key="sekrit"), session=session)
        with pytest.raises(VerificationFailed):
            await verifier.verify("")
        session.post.assert_not_called()

    async def test_unconfigured_in_debug_passes(self):
        session = _session_returning({"success": False})
        verifier = TurnstileVerifier(make_settings(turnstile_secret_key=""), session=session)
        await verifier.verify("anything")
        session.post.assert_not_called()

    async def test_unconfigured_in_production_fails(self):
        verifier = TurnstileVerifier(make_settings(debug=False, turnstile_secret_key=""))
        with pytest.raises(VerificationFailed):
            await verifier.verify("anything")
