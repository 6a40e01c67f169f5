"""Credential providers for the two permission modes.

The agent service client only needs an azure-core TokenCredential. Both
permission modes are expressed as a CredentialProvider so the rest of the
console runs one code path regardless of who the calls are made as:

- application: DefaultAzureCredential (managed identity, az login, env vars)
- delegated: the signed-in operator, via DeviceCodeAuth
"""

from __future__ import annotations

from typing import Any, Protocol

from azure.core.credentials import AccessToken, TokenCredential

from agent_console.auth.msal_auth import DeviceCodeAuth
from agent_console.config_schema import AppConfig, PermissionMode
from agent_console.core.logging import get_logger

logger = get_logger(__name__)

APPLICATION_IDENTITY = "application identity"


class CredentialProvider(Protocol):
    """What the registry and shell need from a permission mode."""

    mode: PermissionMode

    def prepare(self) -> None:
        """Make sure a credential is usable before the first backend call."""
        ...

    def credential(self) -> TokenCredential:
        """Return the credential used to build backend clients."""
        ...

    def describe_identity(self) -> str:
        """Human-readable name of who the backend is called as."""
        ...


class DelegatedTokenCredential(TokenCredential):
    """TokenCredential backed by DeviceCodeAuth.

    Every get_token call goes through the silent-then-device-code state
    machine, so an expired token is refreshed on the next backend call. The
    scopes requested by the SDK are ignored: the delegated scope set is fixed
    by DeviceCodeAuth.
    """

    def __init__(self, auth: DeviceCodeAuth):
        self._auth = auth

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        logger.debug("Delegated token requested", requested_scopes=list(scopes))
        token = self._auth.acquire_token()
        return AccessToken(token.access_token, token.expires_on)

    def close(self) -> None:
        pass


class ApplicationCredentialProvider:
    """Calls the backend as a fixed service identity."""

    mode: PermissionMode = "application"

    def __init__(self, credential: TokenCredential | None = None):
        self._credential = credential

    def prepare(self) -> None:
        pass

    def credential(self) -> TokenCredential:
        if self._credential is None:
            from azure.identity import DefaultAzureCredential

            self._credential = DefaultAzureCredential()
        return self._credential

    def describe_identity(self) -> str:
        return APPLICATION_IDENTITY


class DelegatedCredentialProvider:
    """Calls the backend as the operator signed in through the device code flow."""

    mode: PermissionMode = "delegated"

    def __init__(self, auth: DeviceCodeAuth):
        self.auth = auth
        self._credential = DelegatedTokenCredential(auth)

    def prepare(self) -> None:
        """Sign in up-front so the device code prompt appears before the menu work starts.

        Raises:
            AuthenticationError: If sign-in fails
        """
        self.auth.sign_in()

    def credential(self) -> TokenCredential:
        return self._credential

    def describe_identity(self) -> str:
        return self.auth.get_current_identity()


def build_auth(config: AppConfig) -> DeviceCodeAuth:
    """Create the delegated authentication service from config.

    Raises:
        ConfigValidationError: If client or tenant id is missing
    """
    return DeviceCodeAuth(
        client_id=config.auth.client_id or "",
        tenant_id=config.auth.tenant_id or "",
        scope=config.auth.scope,
        token_cache_path=config.auth.token_cache_path,
    )


def build_credential_provider(
    config: AppConfig, mode: PermissionMode | None = None
) -> CredentialProvider:
    """Pick the credential provider for the configured (or overridden) mode.

    Raises:
        ConfigValidationError: If delegated mode is chosen without client/tenant ids
    """
    selected = mode or config.auth.mode
    if selected == "delegated":
        return DelegatedCredentialProvider(build_auth(config))
    return ApplicationCredentialProvider()
