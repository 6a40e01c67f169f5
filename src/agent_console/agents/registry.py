"""Agent registry: validates configured agents and creates or reuses them remotely.

Usage:
    from agent_console.agents.registry import AgentRegistry, select_valid_agents

    selection = select_valid_agents(config.agents)
    registry = AgentRegistry(project_client)

    agent = registry.create_or_reuse_agent(selection.valid[0])
    session = registry.open_session(agent)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from agent_console.agents.backend import call_backend
from agent_console.agents.session import ConversationSession
from agent_console.agents.tools import build_tool_definitions
from agent_console.config_schema import AgentConfig
from agent_console.core.errors import AgentValidationError, BackendError
from agent_console.core.logging import get_logger

if TYPE_CHECKING:
    from azure.ai.agents.models import Agent
    from azure.ai.projects import AIProjectClient

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AgentSelection:
    """Configured agents split into selectable and rejected entries.

    Both lists keep the relative order of the config file.
    """

    valid: list[AgentConfig] = field(default_factory=list)
    rejected: list[AgentValidationError] = field(default_factory=list)

    def find(self, name: str) -> AgentConfig | None:
        """Look up a valid agent by name (case-insensitive)."""
        for agent in self.valid:
            if agent.name.lower() == name.lower():
                return agent
        return None


def _describe_errors(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        if err["type"] == "missing":
            parts.append(f"missing '{field_path}'")
        else:
            parts.append(f"'{field_path}' {err['msg']}")
    return ", ".join(parts)


def select_valid_agents(raw_agents: list[dict[str, Any]]) -> AgentSelection:
    """Validate each configured agent on its own.

    Invalid entries are logged and excluded instead of aborting the run.

    Args:
        raw_agents: The raw 'agents' list from config

    Returns:
        AgentSelection with valid agents and the errors for rejected ones
    """
    valid: list[AgentConfig] = []
    rejected: list[AgentValidationError] = []
    seen: set[str] = set()

    for index, raw in enumerate(raw_agents):
        name = str(raw.get("name") or "")
        try:
            agent = AgentConfig(**raw)
        except ValidationError as e:
            error = AgentValidationError(_describe_errors(e), index=index, name=name)
        else:
            if agent.name.lower() not in seen:
                seen.add(agent.name.lower())
                valid.append(agent)
                continue
            # Names identify remote agents, so a second entry could never be selected
            error = AgentValidationError(
                f"duplicate agent name '{agent.name}'", index=index, name=agent.name
            )

        logger.warning(
            "Invalid agent configuration excluded",
            index=index,
            agent_name=name or None,
            errors=str(error),
        )
        rejected.append(error)

    return AgentSelection(valid=valid, rejected=rejected)


class AgentRegistry:
    """Creates or reuses remote agents for named configurations.

    Attributes:
        project_client: AIProjectClient built from the active credential
    """

    def __init__(self, project_client: AIProjectClient):
        self.project_client = project_client
        self._agents = project_client.agents

    def find_agent(self, name: str) -> Agent | None:
        """Return the remote agent with this exact name, if one exists.

        Raises:
            BackendError: If listing agents fails
        """
        agents = call_backend(
            "list_agents",
            lambda: list(self._agents.list_agents()),
            agent_name=name,
        )
        for agent in agents:
            if agent.name == name:
                return agent
        return None

    def get_connection_id(self, connection_name: str) -> str:
        """Resolve a project connection name to its id (case-insensitive).

        Raises:
            BackendError: If the connection does not exist or listing fails
        """
        if not connection_name or not connection_name.strip():
            raise ValueError("connection_name cannot be empty")

        connections = call_backend(
            "list_connections",
            lambda: list(self.project_client.connections.list()),
            connection_name=connection_name,
        )
        for connection in connections:
            if connection.name.lower() == connection_name.lower():
                return connection.id

        logger.warning("Connection not found", connection_name=connection_name)
        raise BackendError(
            f"Connection '{connection_name}' not found in the project. "
            "Check the name under Management center → Connected resources.",
            operation="get_connection",
            context={"connection_name": connection_name},
        )

    def create_or_reuse_agent(self, config: AgentConfig) -> Agent:
        """Return the remote agent for this config, creating it if needed.

        An existing agent with the same name is reused as-is.

        Raises:
            ToolConfigurationError: If any grounding tool cannot be built
            BackendError: If the agent service call fails
        """
        existing = self.find_agent(config.name)
        if existing is not None:
            logger.info("Reusing existing agent", agent_name=config.name, agent_id=existing.id)
            return existing

        bundle = build_tool_definitions(config.tools, self.get_connection_id)

        kwargs: dict[str, Any] = {
            "model": config.deployment,
            "name": config.name,
            "description": config.description,
            "instructions": config.instructions,
        }
        if not bundle.is_empty:
            kwargs["tools"] = bundle.definitions
            kwargs["tool_resources"] = bundle.resources

        agent = call_backend(
            "create_agent",
            lambda: self._agents.create_agent(**kwargs),
            agent_name=config.name,
            deployment=config.deployment,
        )
        logger.info(
            "Agent created",
            agent_name=config.name,
            agent_id=agent.id,
            tools=len(bundle.definitions),
        )
        return agent

    def validate_connections(self, config: AgentConfig) -> bool:
        """Check that every tool connection of an agent exists.

        Returns:
            True if all connections resolve (or the agent has no tools)
        """
        if not config.tools:
            logger.info("Agent has no tools to validate", agent_name=config.name)
            return True

        all_valid = True
        for tool in config.tools:
            try:
                self.get_connection_id(tool.connection_name)
            except BackendError as e:
                logger.warning(
                    "Invalid connection for tool",
                    connection_name=tool.connection_name,
                    tool_type=tool.tool_type.value,
                    agent_name=config.name,
                    error=str(e),
                )
                all_valid = False
        return all_valid

    def open_session(self, agent: Agent) -> ConversationSession:
        """Start a conversation with an agent. The thread is created on first send."""
        return ConversationSession(self._agents, agent_id=agent.id, agent_name=agent.name)
