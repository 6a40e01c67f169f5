"""Pytest fixtures and configuration for agent console tests.

Provides common fixtures for configuration, environment isolation and
fake agent service objects.
"""

from pathlib import Path
from types import SimpleNamespace
from typing import Any, Generator

import pytest
import yaml

from agent_console.config import CONFIG_PATH_ENV, ENV_OVERRIDES
from agent_console.config_schema import AppConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep AGENT_CONSOLE_* variables from the developer's shell out of tests."""
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def sample_agents() -> list[dict[str, Any]]:
    """Three valid agent entries covering every tool type."""
    return [
        {
            "name": "Web Research Agent",
            "deployment": "gpt-4o",
            "description": "Web search",
            "instructions": "Cite your sources.",
            "tools": [
                {"tool_type": "BingGroundingSearch", "connection_name": "bing-grounding"},
            ],
        },
        {
            "name": "Docs Site Agent",
            "deployment": "gpt-4o",
            "instructions": "Only use the docs sites.",
            "tools": [
                {
                    "tool_type": "CustomBingGroundingSearch",
                    "connection_name": "bing-custom",
                    "configuration_name": "product-docs",
                },
            ],
        },
        {
            "name": "Knowledge Base Agent",
            "deployment": "gpt-4o-mini",
            "tools": [
                {
                    "tool_type": "AzureAISearch",
                    "connection_name": "search-service",
                    "configuration_name": "kb-index",
                },
            ],
        },
    ]


@pytest.fixture
def sample_config_dict(sample_agents: list[dict[str, Any]]) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "project": {
            "endpoint": "https://test-resource.services.ai.azure.com/api/projects/test-project",
        },
        "auth": {
            "mode": "application",
            "client_id": "test-client-id",
            "tenant_id": "test-tenant-id",
            "token_cache_path": None,
        },
        "agents": sample_agents,
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_dict: dict[str, Any]) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(yaml.dump(sample_config_dict, default_flow_style=False))
    return config_path


@pytest.fixture
def set_config_env(config_file: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Point AGENT_CONSOLE_CONFIG_PATH at the temp config file."""
    monkeypatch.setenv(CONFIG_PATH_ENV, str(config_file))
    yield


# ---------------------------------------------------------------------------
# Fake agent service objects
# ---------------------------------------------------------------------------


class FakeRunStream:
    """Stands in for the SDK's run stream: a context manager yielding event tuples."""

    def __init__(self, events: list[Any], fail_with: Exception | None = None):
        self.events = events
        self.fail_with = fail_with
        self.entered = False
        self.exited = False

    def __enter__(self) -> "FakeRunStream":
        self.entered = True
        return self

    def __exit__(self, *exc: Any) -> None:
        self.exited = True

    def __iter__(self):
        yield from self.events
        if self.fail_with is not None:
            raise self.fail_with


def make_connection_id(name: str) -> str:
    """A project connection id in the full resource path format the SDK requires."""
    return (
        "/subscriptions/00000000-0000-0000-0000-000000000000"
        "/resourceGroups/rg-agents/providers/Microsoft.CognitiveServices"
        f"/accounts/test-resource/projects/test-project/connections/{name}"
    )


def make_url_citation(url: str, title: str | None = None) -> SimpleNamespace:
    """A URL citation annotation as found on a ThreadMessage."""
    return SimpleNamespace(url_citation=SimpleNamespace(url=url, title=title))


@pytest.fixture
def fake_stream_factory():
    """Return the FakeRunStream class for building streams in tests."""
    return FakeRunStream


@pytest.fixture
def connection_id_factory():
    """Return a builder for well-formed project connection ids."""
    return make_connection_id


@pytest.fixture
def url_citation_factory():
    """Return a builder for URL citation annotations."""
    return make_url_citation
