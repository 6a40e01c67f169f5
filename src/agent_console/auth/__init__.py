"""Authentication module for the agent service.

Provides MSAL-based device code flow authentication for delegated permissions,
and credential providers that hide the permission mode from the rest of the
console.

Usage:
    from agent_console.auth import DeviceCodeAuth, DelegatedCredentialProvider

    auth = DeviceCodeAuth(
        client_id="your-client-id",
        tenant_id="your-tenant-id",
        token_cache_path="data/token_cache.json",
    )

    provider = DelegatedCredentialProvider(auth)
    credential = provider.credential()
"""

from agent_console.auth.credentials import (
    ApplicationCredentialProvider,
    CredentialProvider,
    DelegatedCredentialProvider,
    DelegatedTokenCredential,
    build_auth,
    build_credential_provider,
)
from agent_console.auth.msal_auth import UNKNOWN_IDENTITY, DeviceCodeAuth

__all__ = [
    "ApplicationCredentialProvider",
    "CredentialProvider",
    "DelegatedCredentialProvider",
    "DelegatedTokenCredential",
    "DeviceCodeAuth",
    "UNKNOWN_IDENTITY",
    "build_auth",
    "build_credential_provider",
]
