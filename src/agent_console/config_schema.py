"""Pydantic configuration schema for the agent console.

This module defines the configuration schema that mirrors config.yaml structure.
Everything except the agent list is validated on startup; agent entries are kept
raw here and validated one by one (see AgentConfig and
agent_console.agents.registry.select_valid_agents) so that a single bad agent
never aborts the run.

Usage:
    from agent_console.config_schema import AppConfig

    config = AppConfig(**yaml_data)
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

# Delegated scope for Azure AI Foundry user impersonation
DEFAULT_DELEGATED_SCOPE = "https://ai.azure.com/user_impersonation"

PermissionMode = Literal["application", "delegated"]


class ProjectConfig(BaseModel):
    """Azure AI Foundry project the agents live in."""

    endpoint: str = Field(
        description="Project endpoint, e.g. https://<resource>.services.ai.azure.com/api/projects/<project>",
    )

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Require an https endpoint."""
        if not v or not v.strip():
            raise ValueError("Project endpoint cannot be empty")
        v = v.strip()
        if not v.startswith("https://"):
            raise ValueError("Project endpoint must start with 'https://'")
        return v


class AuthConfig(BaseModel):
    """Permission mode and Entra ID settings for delegated sign-in."""

    mode: PermissionMode = Field(
        default="application",
        description="'application' uses a service identity, 'delegated' signs in the operator",
    )
    client_id: str | None = Field(
        default=None,
        description="Entra ID Application (client) ID, required for delegated mode",
    )
    tenant_id: str | None = Field(
        default=None,
        description="Entra ID Directory (tenant) ID, required for delegated mode",
    )
    scope: str = Field(
        default=DEFAULT_DELEGATED_SCOPE,
        description="The single permission scope requested for every delegated token",
    )
    token_cache_path: str | None = Field(
        default="data/token_cache.json",
        description="Path to MSAL token cache file, or null for an in-memory cache",
    )

    @field_validator("token_cache_path")
    @classmethod
    def validate_token_cache_path(cls, v: str | None) -> str | None:
        """Ensure token cache path doesn't contain path traversal."""
        if v is None:
            return v
        if not v.strip():
            raise ValueError("Token cache path cannot be empty (use null for in-memory)")
        if ".." in v:
            raise ValueError("Token cache path cannot contain '..' (path traversal)")
        return v

    @model_validator(mode="after")
    def require_ids_for_delegated(self) -> "AuthConfig":
        """Delegated mode cannot run without an app registration."""
        if self.mode == "delegated":
            missing = [
                name
                for name, value in (("client_id", self.client_id), ("tenant_id", self.tenant_id))
                if not value or not value.strip()
            ]
            if missing:
                raise ValueError(
                    f"Delegated mode requires {' and '.join(missing)}. "
                    "Set them under 'auth' or via AGENT_CONSOLE_CLIENT_ID / AGENT_CONSOLE_TENANT_ID"
                )
        return self


class LoggingConfig(BaseModel):
    """Log output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=False,
        description="Emit JSON log lines instead of the console renderer",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class ToolType(str, Enum):
    """Grounding tool types an agent can be bound to."""

    BING_GROUNDING = "BingGroundingSearch"
    BING_CUSTOM_SEARCH = "CustomBingGroundingSearch"
    AZURE_AI_SEARCH = "AzureAISearch"


class ToolConfig(BaseModel):
    """A grounding tool binding: tool type plus the named project connection."""

    tool_type: ToolType = Field(description="Grounding tool type tag")
    connection_name: str = Field(description="Name of the project connection backing the tool")
    configuration_name: str | None = Field(
        default=None,
        description="Custom search configuration name, or index name for AzureAISearch",
    )

    @field_validator("connection_name")
    @classmethod
    def validate_connection_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Tool connection name cannot be empty")
        return v.strip()


class AgentConfig(BaseModel):
    """One named agent definition."""

    name: str = Field(description="Agent name, also used to find an existing remote agent")
    deployment: str = Field(description="Model deployment name the agent runs on")
    description: str = Field(default="", description="Short description shown in the backend")
    instructions: str = Field(default="", description="System instructions for the agent")
    tools: list[ToolConfig] = Field(default_factory=list, description="Grounding tools")

    @field_validator("name", "deployment")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("cannot be empty")
        return v.strip()


class AppConfig(BaseModel):
    """Root configuration model."""

    schema_version: int = Field(default=1, description="Config schema version")
    project: ProjectConfig
    auth: AuthConfig = Field(default_factory=AuthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    agents: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Raw agent entries, validated individually by the registry",
    )

    @field_validator("agents", mode="before")
    @classmethod
    def agents_must_be_mappings(cls, v: Any) -> Any:
        """Keep non-mapping entries out of the raw list without failing the run."""
        if v is None:
            return []
        if isinstance(v, list):
            return [item if isinstance(item, dict) else {"_invalid": item} for item in v]
        return v
