"""Custom exception types for the agent console.

Error messages follow one pattern throughout the project:
- What failed (specific operation or component)
- Why it failed (the specific condition)
- How to fix it (actionable guidance)
"""

from typing import Any


class AgentConsoleError(Exception):
    """Base exception for all agent console errors."""

    pass


class ConfigError(AgentConsoleError):
    """Base class for configuration problems. Always fatal at startup."""

    pass


class ConfigLoadError(ConfigError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class ConfigValidationError(ConfigError):
    """Raised when config.yaml fails Pydantic validation or a required setting is missing.

    Includes specific field errors with actionable messages.
    """

    pass


class AuthenticationError(AgentConsoleError):
    """Raised when silent or device code token acquisition fails."""

    pass


class BackendError(AgentConsoleError):
    """Raised when a call to the agent service fails.

    Attributes:
        operation: Name of the backend operation that failed (e.g. "create_thread")
        context: Identifiers involved in the call (agent id, thread id, ...)
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.context = context or {}


class ToolConfigurationError(BackendError):
    """Raised when a grounding tool definition cannot be built for an agent.

    Any tool failure fails the whole agent creation.
    """

    def __init__(self, message: str, tool_type: str | None = None, connection_name: str | None = None):
        super().__init__(
            message,
            operation="build_tool_definitions",
            context={"tool_type": tool_type, "connection_name": connection_name},
        )
        self.tool_type = tool_type
        self.connection_name = connection_name


class AgentValidationError(AgentConsoleError):
    """Raised when a single agent entry in the config is malformed.

    Non-fatal: the agent is excluded from the selectable list.

    Attributes:
        index: Position of the agent in the configured list (0-based)
        name: Agent name as written in the config (may be empty)
    """

    def __init__(self, message: str, index: int, name: str = ""):
        super().__init__(message)
        self.index = index
        self.name = name


class AgentSelectionError(AgentConsoleError):
    """Raised when the operator picks an agent number outside the menu."""

    pass
