"""Configuration loader.

Loads config.yaml, applies environment overrides and validates the result
against the Pydantic schema. There is no process-wide config singleton: the
CLI loads the config once and passes it to everything that needs it.

Usage:
    from agent_console.config import load_config

    config = load_config()                      # AGENT_CONSOLE_CONFIG_PATH or default
    config = load_config(Path("other.yaml"))
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agent_console.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from agent_console.core.errors import ConfigLoadError, ConfigValidationError
from agent_console.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

CONFIG_PATH_ENV = "AGENT_CONSOLE_CONFIG_PATH"

# Environment variable -> (section, key) overrides applied before validation
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "AGENT_CONSOLE_PROJECT_ENDPOINT": ("project", "endpoint"),
    "AGENT_CONSOLE_AUTH_MODE": ("auth", "mode"),
    "AGENT_CONSOLE_CLIENT_ID": ("auth", "client_id"),
    "AGENT_CONSOLE_TENANT_ID": ("auth", "tenant_id"),
}


def get_config_path() -> Path:
    """Get the config file path from environment or default."""
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages.

    Args:
        error: Pydantic ValidationError

    Returns:
        Formatted error message with specific field errors
    """
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type == "string_type":
            messages.append(f"  - Field '{field_path}' must be a string")
        elif err_type == "int_type":
            messages.append(f"  - Field '{field_path}' must be an integer")
        elif not field_path:
            messages.append(f"  - {msg}")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    Args:
        path: Path to YAML file

    Returns:
        Parsed YAML as dictionary

    Raises:
        ConfigLoadError: If file not found or YAML parse error
    """
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it by copying config/config.yaml.example to {path}"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigLoadError(
                    f"Configuration file must be a YAML mapping, got {type(data).__name__}"
                )
            return data
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e


def apply_env_overrides(data: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Overlay AGENT_CONSOLE_* environment variables onto parsed YAML.

    Empty variables are ignored. The input dict is not mutated.

    Args:
        data: Parsed YAML data
        environ: Environment mapping (defaults to os.environ)

    Returns:
        A new dict with overrides applied
    """
    env = os.environ if environ is None else environ
    merged = dict(data)
    for var, (section, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if not value:
            continue
        current = merged.get(section)
        section_data = dict(current) if isinstance(current, dict) else {}
        section_data[key] = value
        merged[section] = section_data
        logger.debug("Config value overridden from environment", variable=var)
    return merged


def _validate_config(data: dict[str, Any], path: Path) -> AppConfig:
    """Validate config data against Pydantic schema.

    Args:
        data: Parsed YAML data
        path: Path to config file (for error messages)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {path}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade agent-console or downgrade the config."
        )

    return config


def load_config(path: Path | None = None, environ: dict[str, str] | None = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Optional path to config file. If not provided, uses
              AGENT_CONSOLE_CONFIG_PATH env var or default.
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    config_path = path or get_config_path()

    logger.debug("Loading configuration", path=str(config_path))

    data = apply_env_overrides(_load_yaml(config_path), environ)
    config = _validate_config(data, config_path)

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path),
        schema_version=config.schema_version,
        auth_mode=config.auth.mode,
        agents_count=len(config.agents),
    )

    return config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file and summarise it.

    Useful for the validate-config CLI command.

    Args:
        path: Path to config file. If not provided, uses default.

    Returns:
        Tuple of (is_valid, message)
    """
    from agent_console.agents.registry import select_valid_agents

    config_path = path or get_config_path()

    try:
        config = load_config(config_path)
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")

    selection = select_valid_agents(config.agents)
    lines = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - permission mode: {config.auth.mode}",
        f"  - {len(selection.valid)} valid agents",
    ]
    for rejected in selection.rejected:
        label = rejected.name or f"#{rejected.index + 1}"
        lines.append(f"  - agent '{label}' excluded: {rejected}")

    if not selection.valid:
        lines.append("No valid agents found. Please check the 'agents' section.")
        return (False, "\n".join(lines))
    return (True, "\n".join(lines))
