"""
Tests for configuration loading and URL helpers.
"""

import pytest

from netsuite_sync.config import NetSuiteConfig, account_url_id
from netsuite_sync.errors import ConfigurationError
from netsuite_sync.models import ConflictStrategy


@pytest.fixture
def env():
    return {
        "NETSUITE_ACCOUNT_ID": "1234567_SB1",
        "NETSUITE_CLIENT_ID": "client-id",
        "NETSUITE_CLIENT_SECRET": "client-secret",
        "NETSUITE_REDIRECT_URI": "https://localhost/callback",
        "NETSUITE_TOKEN_ENCRYPTION_KEY": "secret",
    }


class TestFromEnv:
    """Tests for NetSuiteConfig.from_env."""

    def test_required_only(self, env):
        config = NetSuiteConfig.from_env(env)

        assert config.account_id == "1234567_SB1"
        assert config.concurrency_limit == 15
        assert config.conflict_strategy == ConflictStrategy.NEWEST_WINS
        assert config.max_retries == 3

    def test_optional_overrides(self, env):
        env.update({
            "NETSUITE_CONCURRENCY_LIMIT": "5",
            "NETSUITE_CONFLICT_STRATEGY": "manual",
            "NETSUITE_REQUEST_TIMEOUT": "10",
        })

        config = NetSuiteConfig.from_env(env)

        assert config.concurrency_limit == 5
        assert config.conflict_strategy == ConflictStrategy.MANUAL
        assert config.request_timeout == 10.0

    def test_missing_vars_listed(self, env):
        del env["NETSUITE_CLIENT_ID"]
        env["NETSUITE_CLIENT_SECRET"] = ""

        with pytest.raises(ConfigurationError) as exc_info:
            NetSuiteConfig.from_env(env)

        assert "NETSUITE_CLIENT_ID" in str(exc_info.value)
        assert "NETSUITE_CLIENT_SECRET" in str(exc_info.value)

    def test_invalid_value(self, env):
        env["NETSUITE_CONFLICT_STRATEGY"] = "coin_flip"
        with pytest.raises(ConfigurationError, match="Invalid NetSuite configuration"):
            NetSuiteConfig.from_env(env)

    def test_reads_process_environment(self, env, monkeypatch):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        assert NetSuiteConfig.from_env().client_id == "client-id"


class TestUrls:
    """Tests for the URL helpers."""

    @pytest.mark.parametrize("account_id, expected", [
        ("1234567", "1234567"),
        ("1234567_SB1", "1234567-sb1"),
        ("TSTDRV123", "tstdrv123"),
    ])
    def test_account_url_id(self, account_id, expected):
        assert account_url_id(account_id) == expected

    def test_endpoints(self, config):
        assert config.suiteql_url == (
            "https://1234567-sb1.suitetalk.api.netsuite.com/services/rest/query/v1/suiteql"
        )
        assert config.token_endpoint == (
            "https://1234567-sb1.app.netsuite.com/app/login/oauth2/token.nl"
        )
        assert config.authorize_endpoint.endswith("/app/login/oauth2/authorize.nl")

    def test_record_url(self, config):
        base = "https://1234567-sb1.suitetalk.api.netsuite.com/services/rest/record/v1"
        assert config.record_url("customer") == f"{base}/customer"
        assert config.record_url("customer", "42") == f"{base}/customer/42"
