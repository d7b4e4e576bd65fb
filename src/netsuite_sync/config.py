"""
NetSuite connection configuration and URL helpers.

NetSuite uses different hosts for REST and auth, and sandbox account ids
come with inconsistent casing and separators (e.g. "1234567_SB1").
"""

import os
from typing import Mapping

from pydantic import BaseModel, Field, ValidationError

from netsuite_sync.errors import ConfigurationError
from netsuite_sync.models import ConflictStrategy

# NetSuite shares 15 concurrent requests across all integrations on an account
DEFAULT_CONCURRENCY_LIMIT = 15

_REQUIRED_ENV = {
    "account_id": "NETSUITE_ACCOUNT_ID",
    "client_id": "NETSUITE_CLIENT_ID",
    "client_secret": "NETSUITE_CLIENT_SECRET",
    "redirect_uri": "NETSUITE_REDIRECT_URI",
    "token_encryption_key": "NETSUITE_TOKEN_ENCRYPTION_KEY",
}

_OPTIONAL_ENV = {
    "concurrency_limit": "NETSUITE_CONCURRENCY_LIMIT",
    "conflict_strategy": "NETSUITE_CONFLICT_STRATEGY",
    "request_timeout": "NETSUITE_REQUEST_TIMEOUT",
    "max_retries": "NETSUITE_MAX_RETRIES",
}


class NetSuiteConfig(BaseModel):
    """Everything needed to talk to one NetSuite account."""

    account_id: str = Field(min_length=1)
    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_uri: str = Field(min_length=1)
    token_encryption_key: str = Field(min_length=1)
    concurrency_limit: int = Field(DEFAULT_CONCURRENCY_LIMIT, ge=1)
    conflict_strategy: ConflictStrategy = ConflictStrategy.NEWEST_WINS
    request_timeout: float = Field(30.0, gt=0)
    max_retries: int = Field(3, ge=0)

    @classmethod
    def from_env(cls, env: Mapping[str, str | None] | None = None) -> "NetSuiteConfig":
        """
        Build config from NETSUITE_* environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid
        """
        env = os.environ if env is None else env

        values: dict[str, str] = {}
        missing = []
        for key, var in _REQUIRED_ENV.items():
            value = env.get(var)
            if not value:
                missing.append(var)
            else:
                values[key] = value

        if missing:
            raise ConfigurationError(
                f"Missing required NetSuite configuration: {', '.join(missing)}"
            )

        for key, var in _OPTIONAL_ENV.items():
            value = env.get(var)
            if value:
                values[key] = value

        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "NetSuiteConfig":
        """Validate a plain dict (e.g. a config file), wrapping pydantic errors."""
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid NetSuite configuration: {e}") from e

    @property
    def url_account_id(self) -> str:
        return account_url_id(self.account_id)

    @property
    def rest_base_url(self) -> str:
        return f"https://{self.url_account_id}.suitetalk.api.netsuite.com"

    @property
    def auth_base_url(self) -> str:
        return f"https://{self.url_account_id}.app.netsuite.com"

    @property
    def suiteql_url(self) -> str:
        return f"{self.rest_base_url}/services/rest/query/v1/suiteql"

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.auth_base_url}/app/login/oauth2/authorize.nl"

    @property
    def token_endpoint(self) -> str:
        return f"{self.auth_base_url}/app/login/oauth2/token.nl"

    def record_url(self, record_type: str, record_id: str | None = None) -> str:
        base = f"{self.rest_base_url}/services/rest/record/v1/{record_type}"
        return f"{base}/{record_id}" if record_id else base


def account_url_id(account_id: str) -> str:
    """Account id as it appears in hostnames ("1234567_SB1" -> "1234567-sb1")."""
    return account_id.lower().replace("_", "-")
