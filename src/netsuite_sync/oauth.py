"""
OAuth 2.0 authorization-code flow against NetSuite's token endpoint.

Stateless helpers:
- build_authorize_url(): where to send the admin to grant access
- exchange_code(): trade the callback code for a token set
- refresh_access_token(): trade a refresh token for a new token set
"""

import secrets
import time
from urllib.parse import urlencode

import httpx
import structlog

from netsuite_sync.config import NetSuiteConfig
from netsuite_sync.errors import OAuthError
from netsuite_sync.models import TokenSet

logger = structlog.get_logger(__name__)

SCOPES = ("rest_webservices", "suite_analytics")


def generate_state() -> str:
    """Random anti-CSRF token for the authorize redirect."""
    return secrets.token_urlsafe(32)


def build_authorize_url(config: NetSuiteConfig, state: str) -> str:
    params = {
        "response_type": "code",
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "scope": " ".join(SCOPES),
        "state": state,
    }
    return f"{config.authorize_endpoint}?{urlencode(params)}"


def exchange_code(
    config: NetSuiteConfig,
    code: str,
    http_client: httpx.Client | None = None,
) -> TokenSet:
    """
    Exchange an authorization code for tokens.

    Raises:
        OAuthError: If NetSuite rejects the exchange
    """
    data = _post_token_request(
        config,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": config.redirect_uri,
        },
        "Token exchange",
        http_client,
    )
    return _to_token_set(data)


def refresh_access_token(
    config: NetSuiteConfig,
    refresh_token: str,
    http_client: httpx.Client | None = None,
) -> TokenSet:
    """
    Get a new access token using a refresh token.

    NetSuite normally rotates the refresh token too; if the response
    omits it, the old one stays valid and is carried over.

    Raises:
        OAuthError: If NetSuite rejects the refresh
    """
    data = _post_token_request(
        config,
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        },
        "Token refresh",
        http_client,
    )
    return _to_token_set(data, fallback_refresh_token=refresh_token)


def _post_token_request(
    config: NetSuiteConfig,
    form: dict[str, str],
    action: str,
    http_client: httpx.Client | None,
) -> dict:
    log = logger.bind(account_id=config.account_id, grant_type=form["grant_type"])
    auth = httpx.BasicAuth(config.client_id, config.client_secret)
    headers = {"Content-Type": "application/x-www-form-urlencoded"}

    try:
        if http_client is not None:
            response = http_client.post(config.token_endpoint, data=form, auth=auth, headers=headers)
        else:
            with httpx.Client(timeout=config.request_timeout) as client:
                response = client.post(config.token_endpoint, data=form, auth=auth, headers=headers)
    except httpx.HTTPError as e:
        log.warning("Token request failed", error=str(e))
        raise OAuthError(f"{action} failed: {e}") from e

    if not response.is_success:
        log.warning("Token request rejected", status_code=response.status_code)
        raise OAuthError(
            f"{action} failed ({response.status_code}): {response.text}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        data = response.json()
    except ValueError as e:
        raise OAuthError(f"{action} returned invalid JSON: {e}") from e

    if not isinstance(data, dict) or not data.get("access_token"):
        raise OAuthError(f"{action} response missing access_token")

    log.info("Token request succeeded")
    return data


def _to_token_set(data: dict, fallback_refresh_token: str | None = None) -> TokenSet:
    refresh_token = data.get("refresh_token") or fallback_refresh_token
    if not refresh_token:
        raise OAuthError("Token response missing refresh_token")

    return TokenSet(
        access_token=data["access_token"],
        refresh_token=refresh_token,
        expires_in=int(data.get("expires_in", 3600)),
        token_type=data.get("token_type", "Bearer"),
        issued_at_ms=int(time.time() * 1000),
    )
