"""Tests for the credential providers that hide the permission mode."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from azure.core.credentials import AccessToken

from agent_console.auth import msal_auth
from agent_console.auth.credentials import (
    APPLICATION_IDENTITY,
    ApplicationCredentialProvider,
    DelegatedCredentialProvider,
    DelegatedTokenCredential,
    build_credential_provider,
)
from agent_console.auth.msal_auth import AcquiredToken
from agent_console.config_schema import AppConfig
from agent_console.core.errors import AuthenticationError, ConfigValidationError


@pytest.fixture
def fake_auth() -> MagicMock:
    auth = MagicMock()
    auth.acquire_token.return_value = AcquiredToken(
        access_token="user-token", expires_on=1_900_000_000, username="ada@contoso.com"
    )
    auth.get_current_identity.return_value = "ada@contoso.com"
    return auth


def test_delegated_credential_returns_access_token(fake_auth: MagicMock):
    credential = DelegatedTokenCredential(fake_auth)

    token = credential.get_token("https://ai.azure.com/.default")

    assert isinstance(token, AccessToken)
    assert token.token == "user-token"
    assert token.expires_on == 1_900_000_000
    fake_auth.acquire_token.assert_called_once_with()


def test_delegated_credential_asks_auth_on_every_call(fake_auth: MagicMock):
    """Refresh is left to the auth state machine, so each SDK request goes through it."""
    credential = DelegatedTokenCredential(fake_auth)

    credential.get_token("scope-a")
    credential.get_token("scope-b")

    assert fake_auth.acquire_token.call_count == 2


def test_delegated_credential_propagates_auth_errors(fake_auth: MagicMock):
    fake_auth.acquire_token.side_effect = AuthenticationError("declined")
    credential = DelegatedTokenCredential(fake_auth)

    with pytest.raises(AuthenticationError):
        credential.get_token("scope")


def test_delegated_provider_prepare_signs_in(fake_auth: MagicMock):
    provider = DelegatedCredentialProvider(fake_auth)

    provider.prepare()

    fake_auth.sign_in.assert_called_once_with()
    assert provider.mode == "delegated"
    assert provider.describe_identity() == "ada@contoso.com"
    assert isinstance(provider.credential(), DelegatedTokenCredential)


def test_application_provider_uses_given_credential():
    credential = MagicMock()
    provider = ApplicationCredentialProvider(credential)

    provider.prepare()

    assert provider.credential() is credential
    assert provider.mode == "application"
    assert provider.describe_identity() == APPLICATION_IDENTITY


def test_build_application_provider(sample_config: AppConfig):
    provider = build_credential_provider(sample_config)
    assert isinstance(provider, ApplicationCredentialProvider)


def test_build_delegated_provider_from_override(
    sample_config: AppConfig, monkeypatch: pytest.MonkeyPatch
):
    captured: dict[str, Any] = {}

    def fake_app(**kwargs: Any) -> MagicMock:
        captured.update(kwargs)
        app = MagicMock()
        app.get_accounts.return_value = []
        return app

    monkeypatch.setattr(msal_auth.msal, "PublicClientApplication", fake_app)

    provider = build_credential_provider(sample_config, "delegated")

    assert isinstance(provider, DelegatedCredentialProvider)
    assert captured["client_id"] == "test-client-id"
    assert captured["authority"] == "https://login.microsoftonline.com/test-tenant-id"


def test_delegated_override_without_ids_is_config_error(sample_config_dict: dict[str, Any]):
    sample_config_dict["auth"] = {"mode": "application"}
    config = AppConfig(**sample_config_dict)

    with pytest.raises(ConfigValidationError):
        build_credential_provider(config, "delegated")
