"""MSAL device code flow authentication for delegated agent access.

Acquires a token for the signed-in operator so the agent service is called
with user-scoped permissions. The operator authenticates on any device by
visiting a URL and entering a short code.

Per call to acquire_token() the flow is:

    accounts cached?  --no-->  device code flow
          |yes
    silent attempt  --TOKEN------------->  done
                    --NEEDS_INTERACTIVE->  device code flow (at most once)
                    --FAILED------------>  AuthenticationError

Key features:
- Token cache persistence (file-based, with restricted permissions) or in-memory
- Silent acquisition classified into a tagged SilentAttempt result
- Transport retry with exponential backoff for transient network errors
- Clear user feedback during device code flow

Usage:
    from agent_console.auth.msal_auth import DeviceCodeAuth

    auth = DeviceCodeAuth(
        client_id=config.auth.client_id,
        tenant_id=config.auth.tenant_id,
        scope=config.auth.scope,
        token_cache_path=config.auth.token_cache_path,
    )

    token = auth.get_access_token()
    print(auth.get_current_identity())
"""

import os
import random
import stat
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import msal
import requests
from rich.console import Console
from rich.panel import Panel

from agent_console.config_schema import DEFAULT_DELEGATED_SCOPE
from agent_console.core.errors import AuthenticationError, ConfigValidationError
from agent_console.core.logging import get_logger

logger = get_logger(__name__)
console = Console()

T = TypeVar("T")

# Retry configuration for transient network errors inside a single MSAL call
MSAL_MAX_RETRIES = 3
MSAL_RETRY_DELAYS = [1.0, 2.0, 4.0]  # Exponential backoff with jitter

# Returned by get_current_identity() when nobody is signed in
UNKNOWN_IDENTITY = "Unknown User"

# Silent acquisition errors that mean "the operator has to interact again"
UI_REQUIRED_ERRORS = frozenset(
    {
        "interaction_required",
        "login_required",
        "consent_required",
        "invalid_grant",
    }
)

# Device flow errors once the code has expired without the operator finishing
DEVICE_FLOW_TIMEOUT_ERRORS = frozenset({"authorization_pending", "expired_token"})
DEVICE_FLOW_DECLINED_ERRORS = frozenset({"authorization_declined", "access_denied"})


class SilentStatus(Enum):
    """Outcome of one silent token acquisition attempt."""

    TOKEN = "token"
    NEEDS_INTERACTIVE = "needs_interactive"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SilentAttempt:
    """Tagged result of a silent acquisition.

    Attributes:
        status: Which branch of the state machine to take next
        result: MSAL token result (only for TOKEN)
        reason: Why the token was not returned (NEEDS_INTERACTIVE / FAILED)
    """

    status: SilentStatus
    result: dict[str, Any] | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class AcquiredToken:
    """A bearer token and the moment it stops being valid."""

    access_token: str
    expires_on: int
    username: str


@dataclass(frozen=True, slots=True)
class DeviceCodeChallenge:
    """Verification URL and user code shown to the operator. Never persisted."""

    verification_uri: str
    user_code: str
    expires_in: int | None = None

    @classmethod
    def from_flow(cls, flow: dict[str, Any]) -> "DeviceCodeChallenge":
        expires_in = flow.get("expires_in")
        return cls(
            verification_uri=flow["verification_uri"],
            user_code=flow["user_code"],
            expires_in=int(expires_in) if expires_in is not None else None,
        )


def classify_silent_result(result: dict[str, Any] | None) -> SilentAttempt:
    """Map a result of acquire_token_silent_with_error onto a SilentAttempt.

    MSAL returns None when it has nothing usable for the account, a dict with
    an access_token on success, or a dict with an error code otherwise.
    """
    if result is None:
        return SilentAttempt(SilentStatus.NEEDS_INTERACTIVE, reason="no_cached_token")

    if "access_token" in result:
        return SilentAttempt(SilentStatus.TOKEN, result=result)

    error = result.get("error", "unknown_error")
    description = result.get("error_description", "")
    if error in UI_REQUIRED_ERRORS:
        return SilentAttempt(SilentStatus.NEEDS_INTERACTIVE, reason=error)

    return SilentAttempt(SilentStatus.FAILED, reason=f"{error}: {description}".rstrip(": "))


class DeviceCodeAuth:
    """Authentication service for delegated permissions.

    Owns the MSAL PublicClientApplication and its token cache; callers only
    ask for tokens or identity strings and never touch the cache directly.

    Attributes:
        client_id: Entra ID Application (client) ID
        tenant_id: Entra ID Directory (tenant) ID
        scopes: The fixed, single-entry scope set used for every request
        token_cache_path: Path to the token cache file, or None for in-memory

    Security notes:
        - Token cache file is created with mode 600 (owner read/write only)
        - Refresh tokens in the cache are sensitive and should be protected
    """

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        scope: str = DEFAULT_DELEGATED_SCOPE,
        token_cache_path: str | None = None,
        prompt_console: Console | None = None,
    ):
        """Initialize the authentication service.

        Args:
            client_id: Entra ID Application (client) ID
            tenant_id: Entra ID Directory (tenant) ID
            scope: Permission scope requested for every token
            token_cache_path: Where to persist the MSAL cache (None keeps it in memory)
            prompt_console: Console used to show the device code (defaults to stdout)

        Raises:
            ConfigValidationError: If client_id or tenant_id is empty
        """
        if not client_id or not client_id.strip():
            raise ConfigValidationError(
                "auth.client_id is required for delegated mode. "
                "Register an app in Azure Portal: Microsoft Entra ID → "
                "App registrations → New registration"
            )
        if not tenant_id or not tenant_id.strip():
            raise ConfigValidationError(
                "auth.tenant_id is required for delegated mode. "
                "Find it on the Overview page of your Entra ID tenant."
            )

        self.client_id = client_id
        self.tenant_id = tenant_id
        self.scopes: tuple[str, ...] = (scope,)
        self.token_cache_path = Path(token_cache_path) if token_cache_path else None
        self.cache = msal.SerializableTokenCache()
        self._console = prompt_console if prompt_console is not None else console

        self._load_cache()

        authority = f"https://login.microsoftonline.com/{tenant_id}"
        self.app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=authority,
            token_cache=self.cache,
        )

        logger.debug(
            "DeviceCodeAuth initialized",
            client_id=client_id[:8] + "...",
            tenant_id=tenant_id[:8] + "...",
            scopes=list(self.scopes),
            persistent_cache=self.token_cache_path is not None,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get_access_token(self) -> str:
        """Get a valid access token, signing the operator in if needed.

        Returns:
            Bearer token string for the agent service

        Raises:
            AuthenticationError: If silent acquisition fails hard, or the
                device code flow times out, is declined or errors
        """
        return self.acquire_token().access_token

    def acquire_token(self) -> AcquiredToken:
        """Run one pass of the silent-then-interactive state machine.

        A single silent attempt with the first cached account, then at most
        one device code challenge. There is no retry around the whole pass;
        callers that want another try call again.

        Returns:
            The acquired token with its expiry

        Raises:
            AuthenticationError: On any terminal failure
        """
        accounts = self.app.get_accounts()
        if accounts:
            account = accounts[0]
            logger.debug(
                "Attempting silent token acquisition",
                account_count=len(accounts),
                username=account.get("username", "unknown"),
            )
            attempt = self._try_silent(account)

            if attempt.status is SilentStatus.TOKEN:
                self._save_cache()
                logger.debug("Token acquired silently (from cache/refresh)")
                return self._to_acquired_token(attempt.result or {}, account)

            if attempt.status is SilentStatus.FAILED:
                logger.error("Silent token acquisition failed", reason=attempt.reason)
                raise AuthenticationError(
                    f"Failed to refresh the sign-in for {account.get('username', 'the cached account')}: "
                    f"{attempt.reason}. Run 'sign-out' and sign in again if this persists."
                )

            logger.info("Silent token acquisition needs interaction", reason=attempt.reason)
        else:
            logger.info("No cached account, initiating device code flow")

        return self._device_code_flow()

    def is_authenticated(self) -> bool:
        """True if at least one account is cached. Token validity is not checked."""
        return bool(self.app.get_accounts())

    def sign_in(self) -> None:
        """Acquire a token purely for its side effect of populating the cache.

        Raises:
            AuthenticationError: If acquisition fails
        """
        self.acquire_token()

    def sign_out(self) -> None:
        """Remove every cached account and delete the cache file.

        A no-op when nobody is signed in.

        Raises:
            AuthenticationError: If MSAL fails to remove an account
        """
        try:
            accounts = self.app.get_accounts()
            for account in accounts:
                self.app.remove_account(account)
        except Exception as e:
            logger.error("Failed to remove cached account", error=str(e))
            raise AuthenticationError(f"Sign-out failed while clearing the token cache: {e}") from e

        if not accounts:
            logger.debug("Sign-out requested with no cached accounts")
            return

        self._delete_cache_file()
        logger.info("User signed out successfully", accounts_removed=len(accounts))

    def get_current_identity(self) -> str:
        """Return the first cached account's username, or UNKNOWN_IDENTITY.

        Never raises.
        """
        try:
            accounts = self.app.get_accounts()
        except Exception as e:
            logger.warning("Failed to read cached accounts", error=str(e))
            return UNKNOWN_IDENTITY

        if not accounts:
            return UNKNOWN_IDENTITY
        return accounts[0].get("username") or UNKNOWN_IDENTITY

    # ------------------------------------------------------------------
    # Silent acquisition
    # ------------------------------------------------------------------

    def _try_silent(self, account: dict) -> SilentAttempt:
        """Attempt silent acquisition for one account and classify the outcome."""
        try:
            result = self._with_network_retry(
                "Silent token acquisition",
                lambda: self.app.acquire_token_silent_with_error(
                    scopes=list(self.scopes),
                    account=account,
                ),
            )
        except requests.exceptions.RequestException as e:
            return SilentAttempt(SilentStatus.FAILED, reason=f"network_error: {e}")

        attempt = classify_silent_result(result)
        if attempt.status is not SilentStatus.TOKEN and result:
            logger.debug(
                "Silent acquisition did not return a token",
                error=result.get("error"),
                description=result.get("error_description"),
            )
        return attempt

    # ------------------------------------------------------------------
    # Device code flow
    # ------------------------------------------------------------------

    def _device_code_flow(self) -> AcquiredToken:
        """Run the device code flow for interactive authentication.

        Shows the verification URL and code, then blocks until the operator
        completes sign-in or the code expires.

        Returns:
            The acquired token

        Raises:
            AuthenticationError: If the flow cannot start, times out, is declined or fails
        """
        try:
            flow = self._with_network_retry(
                "Device flow initiation",
                lambda: self.app.initiate_device_flow(scopes=list(self.scopes)),
            )
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(
                f"Failed to initiate device code flow after {MSAL_MAX_RETRIES} attempts: {e}. "
                "Check your network connection and try again."
            ) from e

        if "user_code" not in flow:
            error_msg = flow.get("error_description", "Unknown error during flow initiation")
            logger.error("Device code flow initiation failed", error=error_msg)
            raise AuthenticationError(
                f"Failed to initiate device code flow: {error_msg}. "
                "Check that 'Allow public client flows' is enabled in Azure Portal: "
                "App registrations → Your app → Authentication → Advanced settings"
            )

        self._display_auth_prompt(DeviceCodeChallenge.from_flow(flow))

        try:
            result = self._with_network_retry(
                "Device code token acquisition",
                lambda: self.app.acquire_token_by_device_flow(flow),
            )
        except requests.exceptions.RequestException as e:
            result = {
                "error": "network_error",
                "error_description": f"Network error after {MSAL_MAX_RETRIES} retries: {e}",
            }

        if "access_token" not in result:
            self._raise_device_flow_error(result)

        self._save_cache()
        token = self._to_acquired_token(result, None)
        logger.info("Authentication successful", username=token.username)
        return token

    def _raise_device_flow_error(self, result: dict[str, Any]) -> None:
        """Turn a failed device flow result into an actionable AuthenticationError."""
        error = result.get("error", "unknown_error")
        error_desc = result.get("error_description", "Authentication failed")

        if error in DEVICE_FLOW_TIMEOUT_ERRORS:
            logger.error("Authentication timed out waiting for user")
            raise AuthenticationError(
                "Authentication timed out. Please try again and complete the "
                "sign-in process within the time limit."
            )
        if error in DEVICE_FLOW_DECLINED_ERRORS:
            logger.error("User declined authentication")
            raise AuthenticationError(
                "Authentication was declined. Please try again and accept the permission request."
            )
        if "AADSTS7000218" in error_desc:
            logger.error("Public client flow not enabled")
            raise AuthenticationError(
                "Device code flow is not enabled for this application. "
                "In Azure Portal: App registrations → Your app → Authentication → "
                "Advanced settings → Set 'Allow public client flows' to Yes"
            )

        logger.error("Device code flow authentication failed", error=error, description=error_desc)
        raise AuthenticationError(f"Authentication failed: {error_desc}")

    def _display_auth_prompt(self, challenge: DeviceCodeChallenge) -> None:
        """Display authentication instructions to the operator."""
        panel_content = (
            f"Please open a web browser and navigate to:\n\n"
            f"  [bold blue]{challenge.verification_uri}[/bold blue]\n\n"
            f"Enter this code: [bold green]{challenge.user_code}[/bold green]\n\n"
            f"Waiting for you to complete authentication..."
        )
        if challenge.expires_in:
            panel_content += f"\n[dim]The code expires in {challenge.expires_in // 60} minutes.[/dim]"

        self._console.print()
        self._console.print(
            Panel(
                panel_content,
                title="Authentication Required",
                border_style="bright_blue",
            )
        )
        self._console.print()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _with_network_retry(self, description: str, call: Callable[[], T]) -> T:
        """Run an MSAL call, retrying transient network errors with backoff.

        Only requests exceptions are retried; MSAL error dicts are returned
        as-is to the caller.

        Raises:
            requests.exceptions.RequestException: The last error once retries run out
        """
        for attempt in range(MSAL_MAX_RETRIES - 1):
            try:
                return call()
            except requests.exceptions.RequestException as e:
                delay = MSAL_RETRY_DELAYS[attempt]
                # Add jitter (±20%)
                jitter = delay * 0.2 * (2 * random.random() - 1)
                actual_delay = delay + jitter
                logger.warning(
                    f"{description} failed, retrying",
                    attempt=attempt + 1,
                    max_retries=MSAL_MAX_RETRIES,
                    delay=actual_delay,
                    error=str(e),
                )
                time.sleep(actual_delay)

        # Final attempt: its error goes to the caller
        try:
            return call()
        except requests.exceptions.RequestException as e:
            logger.error(
                f"{description} failed after retries",
                max_retries=MSAL_MAX_RETRIES,
                error=str(e),
            )
            raise

    @staticmethod
    def _to_acquired_token(result: dict[str, Any], account: dict | None) -> AcquiredToken:
        claims = result.get("id_token_claims") or {}
        username = (
            claims.get("preferred_username")
            or (account or {}).get("username")
            or UNKNOWN_IDENTITY
        )
        expires_in = int(result.get("expires_in", 0) or 0)
        return AcquiredToken(
            access_token=result["access_token"],
            expires_on=int(time.time()) + expires_in,
            username=username,
        )

    def _load_cache(self) -> None:
        """Load the token cache from disk if it exists."""
        if self.token_cache_path is None or not self.token_cache_path.exists():
            return
        try:
            cache_content = self.token_cache_path.read_text()
            self.cache.deserialize(cache_content)
            logger.debug("Token cache loaded", path=str(self.token_cache_path))
        except (OSError, ValueError) as e:
            # ValueError: MSAL cache deserialization errors (invalid JSON/format)
            logger.warning(
                "Failed to load token cache, will re-authenticate",
                path=str(self.token_cache_path),
                error=str(e),
            )

    def _save_cache(self) -> None:
        """Save the token cache to disk with restricted permissions.

        The cache file is created with mode 600 (owner read/write only)
        to protect the sensitive refresh tokens it contains.
        """
        if self.token_cache_path is None or not self.cache.has_state_changed:
            return

        try:
            self.token_cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.token_cache_path.write_text(self.cache.serialize())
            os.chmod(self.token_cache_path, stat.S_IRUSR | stat.S_IWUSR)
            logger.debug("Token cache saved", path=str(self.token_cache_path))
        except OSError as e:
            logger.error(
                "Failed to save token cache",
                path=str(self.token_cache_path),
                error=str(e),
            )
            # Don't raise - token will just need to be re-acquired next run

    def _delete_cache_file(self) -> None:
        if self.token_cache_path is None or not self.token_cache_path.exists():
            return
        try:
            self.token_cache_path.unlink()
            logger.info("Token cache cleared", path=str(self.token_cache_path))
        except OSError as e:
            logger.warning(
                "Failed to delete token cache file",
                path=str(self.token_cache_path),
                error=str(e),
            )
