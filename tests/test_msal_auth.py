"""Tests for DeviceCodeAuth, the delegated token state machine.

Covers silent acquisition, the single device code fallback, hard failures
that must not fall back, sign-in/sign-out and identity queries, token cache
persistence, and transport retry. MSAL is replaced with an in-memory fake.
"""

from __future__ import annotations

import io
import stat
from pathlib import Path
from typing import Any

import pytest
import requests
from rich.console import Console

from agent_console.auth import msal_auth
from agent_console.auth.msal_auth import (
    MSAL_MAX_RETRIES,
    UNKNOWN_IDENTITY,
    DeviceCodeAuth,
    SilentStatus,
    classify_silent_result,
)
from agent_console.config_schema import DEFAULT_DELEGATED_SCOPE
from agent_console.core.errors import AuthenticationError, ConfigValidationError

# ---------------------------------------------------------------------------
# Fake MSAL application
# ---------------------------------------------------------------------------

ACCOUNT = {"username": "ada@contoso.com", "home_account_id": "uid.utid"}

DEVICE_FLOW = {
    "user_code": "ABCD-1234",
    "verification_uri": "https://microsoft.com/devicelogin",
    "expires_in": 900,
    "message": "To sign in, use a web browser...",
}


def _token_result(username: str = "ada@contoso.com", token: str = "device-token") -> dict[str, Any]:
    return {
        "access_token": token,
        "expires_in": 3600,
        "id_token_claims": {"preferred_username": username},
    }


class FakeMsalApp:
    """Records every MSAL call; silent results are consumed in order."""

    def __init__(
        self,
        accounts: list[dict[str, Any]] | None = None,
        silent_results: list[Any] | None = None,
        flow: dict[str, Any] | None = None,
        device_result: Any = None,
    ):
        self.accounts = list(accounts or [])
        self.silent_results = list(silent_results or [])
        self.flow = flow if flow is not None else dict(DEVICE_FLOW)
        self.device_result = device_result if device_result is not None else _token_result()
        self.silent_calls = 0
        self.initiate_calls = 0
        self.device_calls = 0
        self.requested_scopes: list[list[str]] = []

    def get_accounts(self) -> list[dict[str, Any]]:
        return list(self.accounts)

    def acquire_token_silent_with_error(self, scopes: list[str], account: dict[str, Any]):
        self.silent_calls += 1
        self.requested_scopes.append(list(scopes))
        outcome = self.silent_results.pop(0) if self.silent_results else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def initiate_device_flow(self, scopes: list[str]) -> dict[str, Any]:
        self.initiate_calls += 1
        self.requested_scopes.append(list(scopes))
        return self.flow

    def acquire_token_by_device_flow(self, flow: dict[str, Any]) -> dict[str, Any]:
        self.device_calls += 1
        result = self.device_result
        if isinstance(result, Exception):
            raise result
        if "access_token" in result:
            username = result["id_token_claims"]["preferred_username"]
            self.accounts.append({"username": username, "home_account_id": "uid.utid"})
        return result

    def remove_account(self, account: dict[str, Any]) -> None:
        self.accounts.remove(account)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retry backoff must not slow the suite down."""
    monkeypatch.setattr(msal_auth.time, "sleep", lambda _seconds: None)


@pytest.fixture
def prompt_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def make_auth(monkeypatch: pytest.MonkeyPatch, prompt_output: io.StringIO):
    """Build a DeviceCodeAuth wired to the given fake MSAL app."""

    def _make(app: FakeMsalApp, token_cache_path: str | None = None) -> DeviceCodeAuth:
        monkeypatch.setattr(
            msal_auth.msal, "PublicClientApplication", lambda **kwargs: app
        )
        return DeviceCodeAuth(
            client_id="test-client-id",
            tenant_id="test-tenant-id",
            token_cache_path=token_cache_path,
            prompt_console=Console(file=prompt_output, width=120),
        )

    return _make


# ---------------------------------------------------------------------------
# Tests: silent result classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("result", "expected"),
    [
        (None, SilentStatus.NEEDS_INTERACTIVE),
        ({"access_token": "tok"}, SilentStatus.TOKEN),
        ({"error": "interaction_required"}, SilentStatus.NEEDS_INTERACTIVE),
        ({"error": "invalid_grant", "error_description": "AADSTS50173"}, SilentStatus.NEEDS_INTERACTIVE),
        ({"error": "invalid_client", "error_description": "bad secret"}, SilentStatus.FAILED),
        ({"error": "temporarily_unavailable"}, SilentStatus.FAILED),
    ],
)
def test_classify_silent_result(result: dict[str, Any] | None, expected: SilentStatus):
    assert classify_silent_result(result).status is expected


def test_classify_failed_keeps_reason():
    attempt = classify_silent_result({"error": "invalid_client", "error_description": "bad secret"})
    assert attempt.reason == "invalid_client: bad secret"


# ---------------------------------------------------------------------------
# Tests: get_access_token state machine
# ---------------------------------------------------------------------------


def test_no_accounts_goes_straight_to_device_code(make_auth):
    """Zero cached accounts: no silent attempt, one interactive challenge."""
    app = FakeMsalApp()
    auth = make_auth(app)

    token = auth.get_access_token()

    assert token == "device-token"
    assert app.silent_calls == 0
    assert app.initiate_calls == 1
    assert app.device_calls == 1


def test_silent_success_skips_device_code(make_auth):
    app = FakeMsalApp(accounts=[ACCOUNT], silent_results=[_token_result(token="cached-token")])
    auth = make_auth(app)

    assert auth.get_access_token() == "cached-token"
    assert app.silent_calls == 1
    assert app.initiate_calls == 0


@pytest.mark.parametrize(
    "silent_result",
    [None, {"error": "interaction_required", "error_description": "AADSTS50076 MFA"}],
)
def test_ui_required_triggers_exactly_one_interactive_attempt(make_auth, silent_result):
    app = FakeMsalApp(accounts=[ACCOUNT], silent_results=[silent_result])
    auth = make_auth(app)

    token = auth.acquire_token()

    assert token.access_token == "device-token"
    assert app.silent_calls == 1
    assert app.initiate_calls == 1
    assert app.device_calls == 1


def test_other_silent_failure_propagates_without_interactive(make_auth):
    app = FakeMsalApp(
        accounts=[ACCOUNT],
        silent_results=[{"error": "invalid_client", "error_description": "AADSTS7000215"}],
    )
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="invalid_client"):
        auth.get_access_token()

    assert app.initiate_calls == 0
    assert app.device_calls == 0


def test_silent_network_failure_retries_then_propagates(make_auth):
    """Transport errors are retried inside the one silent attempt, never escalated to interactive."""
    error = requests.exceptions.ConnectionError("connection reset")
    app = FakeMsalApp(accounts=[ACCOUNT], silent_results=[error] * MSAL_MAX_RETRIES)
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="network_error"):
        auth.get_access_token()

    assert app.silent_calls == MSAL_MAX_RETRIES
    assert app.initiate_calls == 0


def test_silent_network_blip_recovers(make_auth):
    app = FakeMsalApp(
        accounts=[ACCOUNT],
        silent_results=[requests.exceptions.Timeout("slow"), _token_result(token="retry-token")],
    )
    auth = make_auth(app)

    assert auth.get_access_token() == "retry-token"
    assert app.silent_calls == 2


def test_silent_succeeds_on_last_retry(make_auth):
    error = requests.exceptions.ConnectionError("connection reset")
    app = FakeMsalApp(
        accounts=[ACCOUNT],
        silent_results=[error] * (MSAL_MAX_RETRIES - 1) + [_token_result(token="last-try")],
    )
    auth = make_auth(app)

    assert auth.get_access_token() == "last-try"
    assert app.silent_calls == MSAL_MAX_RETRIES
    assert app.initiate_calls == 0


def test_failed_interactive_is_not_retried(make_auth):
    """A declined device code surfaces; the next call starts a fresh single attempt."""
    app = FakeMsalApp(device_result={"error": "authorization_declined"})
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="declined"):
        auth.get_access_token()
    assert app.initiate_calls == 1

    app.device_result = _token_result()
    assert auth.get_access_token() == "device-token"
    assert app.initiate_calls == 2


def test_device_code_timeout(make_auth):
    app = FakeMsalApp(device_result={"error": "authorization_pending", "error_description": "pending"})
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="timed out"):
        auth.get_access_token()


def test_device_code_public_client_disabled(make_auth):
    app = FakeMsalApp(
        device_result={"error": "invalid_client", "error_description": "AADSTS7000218: ..."}
    )
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="Allow public client flows"):
        auth.get_access_token()


def test_device_flow_initiation_error(make_auth):
    app = FakeMsalApp(flow={"error": "invalid_scope", "error_description": "scope not found"})
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="scope not found"):
        auth.get_access_token()
    assert app.device_calls == 0


def test_device_flow_network_failure(make_auth):
    app = FakeMsalApp(device_result=requests.exceptions.ConnectionError("offline"))
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="Network error"):
        auth.get_access_token()
    assert app.initiate_calls == 1
    assert app.device_calls == MSAL_MAX_RETRIES


def test_device_code_prompt_shows_url_and_code(make_auth, prompt_output: io.StringIO):
    auth = make_auth(FakeMsalApp())

    auth.get_access_token()

    shown = prompt_output.getvalue()
    assert "https://microsoft.com/devicelogin" in shown
    assert "ABCD-1234" in shown


def test_scope_set_is_identical_for_every_request(make_auth):
    app = FakeMsalApp(accounts=[ACCOUNT], silent_results=[None, _token_result()])
    auth = make_auth(app)

    auth.get_access_token()
    auth.get_access_token()

    assert app.requested_scopes
    assert all(scopes == [DEFAULT_DELEGATED_SCOPE] for scopes in app.requested_scopes)
    assert auth.scopes == (DEFAULT_DELEGATED_SCOPE,)


def test_acquired_token_carries_expiry_and_username(make_auth):
    auth = make_auth(FakeMsalApp())

    token = auth.acquire_token()

    assert token.username == "ada@contoso.com"
    assert token.expires_on > 0


# ---------------------------------------------------------------------------
# Tests: sign-in, sign-out, identity
# ---------------------------------------------------------------------------


def test_sign_in_then_is_authenticated(make_auth):
    auth = make_auth(FakeMsalApp())
    assert auth.is_authenticated() is False

    auth.sign_in()

    assert auth.is_authenticated() is True


def test_sign_out_then_not_authenticated(make_auth):
    app = FakeMsalApp(accounts=[ACCOUNT, {"username": "bob@contoso.com"}])
    auth = make_auth(app)
    assert auth.is_authenticated() is True

    auth.sign_out()

    assert auth.is_authenticated() is False
    assert app.accounts == []


def test_sign_out_without_accounts_is_noop(make_auth):
    auth = make_auth(FakeMsalApp())

    auth.sign_out()

    assert auth.is_authenticated() is False


def test_sign_out_wraps_msal_failures(make_auth):
    app = FakeMsalApp(accounts=[ACCOUNT])

    def broken_remove(account):
        raise RuntimeError("cache locked")

    app.remove_account = broken_remove  # type: ignore[method-assign]
    auth = make_auth(app)

    with pytest.raises(AuthenticationError, match="cache locked"):
        auth.sign_out()


def test_is_authenticated_does_not_check_token_validity(make_auth):
    """An account with an expired token still counts as signed in."""
    app = FakeMsalApp(accounts=[ACCOUNT], silent_results=[{"error": "interaction_required"}])
    auth = make_auth(app)

    assert auth.is_authenticated() is True
    assert app.silent_calls == 0


def test_current_identity_unknown_without_accounts(make_auth):
    auth = make_auth(FakeMsalApp())
    assert auth.get_current_identity() == UNKNOWN_IDENTITY


def test_current_identity_from_first_account(make_auth):
    auth = make_auth(FakeMsalApp(accounts=[ACCOUNT, {"username": "bob@contoso.com"}]))
    assert auth.get_current_identity() == "ada@contoso.com"


def test_current_identity_never_raises(make_auth):
    app = FakeMsalApp()

    def broken_accounts():
        raise RuntimeError("cache unreadable")

    app.get_accounts = broken_accounts  # type: ignore[method-assign]
    auth = make_auth(app)

    assert auth.get_current_identity() == UNKNOWN_IDENTITY


# ---------------------------------------------------------------------------
# Tests: construction and cache persistence
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(("client_id", "tenant_id"), [("", "tenant"), ("client", "  ")])
def test_missing_ids_raise_config_error(client_id: str, tenant_id: str):
    with pytest.raises(ConfigValidationError):
        DeviceCodeAuth(client_id=client_id, tenant_id=tenant_id)


def test_cache_saved_with_owner_only_permissions(make_auth, tmp_path: Path):
    cache_path = tmp_path / "data" / "token_cache.json"
    auth = make_auth(FakeMsalApp(), token_cache_path=str(cache_path))
    auth.cache.has_state_changed = True

    auth.get_access_token()

    assert cache_path.exists()
    mode = stat.S_IMODE(cache_path.stat().st_mode)
    assert mode == stat.S_IRUSR | stat.S_IWUSR


def test_sign_out_deletes_cache_file(make_auth, tmp_path: Path):
    cache_path = tmp_path / "token_cache.json"
    cache_path.write_text("{}")
    auth = make_auth(FakeMsalApp(accounts=[ACCOUNT]), token_cache_path=str(cache_path))

    auth.sign_out()

    assert not cache_path.exists()


def test_corrupt_cache_file_is_ignored(make_auth, tmp_path: Path):
    cache_path = tmp_path / "token_cache.json"
    cache_path.write_text("not json at all")

    auth = make_auth(FakeMsalApp(), token_cache_path=str(cache_path))

    assert auth.get_current_identity() == UNKNOWN_IDENTITY


def test_in_memory_cache_never_touches_disk(make_auth, tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    auth = make_auth(FakeMsalApp())
    auth.cache.has_state_changed = True

    auth.get_access_token()

    assert list(tmp_path.iterdir()) == []
