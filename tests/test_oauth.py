"""
Tests for the OAuth authorization-code helpers.
"""

import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from netsuite_sync.errors import OAuthError
from netsuite_sync.oauth import (
    build_authorize_url,
    exchange_code,
    generate_state,
    refresh_access_token,
)


def token_client(status: int = 200, payload=None, seen: list | None = None) -> httpx.Client:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)

    return httpx.Client(transport=httpx.MockTransport(handler))


class TestAuthorizeUrl:
    """Tests for the authorize redirect."""

    def test_params(self, config):
        url = build_authorize_url(config, "abc")

        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert parsed.netloc == "1234567-sb1.app.netsuite.com"
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["client-id"]
        assert params["redirect_uri"] == ["https://localhost/callback"]
        assert params["scope"] == ["rest_webservices suite_analytics"]
        assert params["state"] == ["abc"]

    def test_state_is_random(self):
        assert generate_state() != generate_state()
        assert len(generate_state()) >= 32


class TestTokenRequests:
    """Tests for code exchange and refresh."""

    def test_exchange_code(self, config):
        seen: list[httpx.Request] = []
        client = token_client(payload={
            "access_token": "at",
            "refresh_token": "rt",
            "expires_in": 1800,
        }, seen=seen)

        tokens = exchange_code(config, "the-code", client)

        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert tokens.expires_in == 1800
        assert tokens.issued_at_ms > 0

        request = seen[0]
        assert str(request.url) == config.token_endpoint
        form = parse_qs(request.content.decode())
        assert form == {
            "grant_type": ["authorization_code"],
            "code": ["the-code"],
            "redirect_uri": ["https://localhost/callback"],
        }
        expected = base64.b64encode(b"client-id:client-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_refresh_keeps_old_refresh_token_when_omitted(self, config):
        client = token_client(payload={"access_token": "new-at", "expires_in": 3600})

        tokens = refresh_access_token(config, "old-rt", client)

        assert tokens.access_token == "new-at"
        assert tokens.refresh_token == "old-rt"

    def test_refresh_uses_rotated_token(self, config):
        seen: list[httpx.Request] = []
        client = token_client(payload={"access_token": "at", "refresh_token": "rotated"}, seen=seen)

        tokens = refresh_access_token(config, "old-rt", client)

        assert tokens.refresh_token == "rotated"
        form = parse_qs(seen[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["old-rt"]

    def test_rejected_request(self, config):
        client = token_client(400, {"error": "invalid_grant"})

        with pytest.raises(OAuthError) as exc_info:
            refresh_access_token(config, "old-rt", client)

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body

    def test_missing_access_token(self, config):
        client = token_client(payload={"refresh_token": "rt"})
        with pytest.raises(OAuthError, match="missing access_token"):
            exchange_code(config, "code", client)

    def test_exchange_without_refresh_token(self, config):
        client = token_client(payload={"access_token": "at"})
        with pytest.raises(OAuthError, match="missing refresh_token"):
            exchange_code(config, "code", client)

    def test_invalid_json(self, config):
        client = token_client(payload="<html>maintenance</html>")
        with pytest.raises(OAuthError, match="invalid JSON"):
            exchange_code(config, "code", client)

    def test_network_failure(self, config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        with pytest.raises(OAuthError, match="Token exchange failed"):
            exchange_code(config, "code", client)
