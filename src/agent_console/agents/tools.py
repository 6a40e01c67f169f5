"""Grounding tool definitions for agents.

Turns the tool bindings from config into agent service tool definitions and
tool resources. Connection names are resolved to connection ids through a
callable so this module never talks to the backend itself.

Any tool that cannot be built (unknown connection, missing configuration
name, the same tool type listed twice) fails the whole agent: an agent
created with only some of its grounding would answer without the sources the
operator configured.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from azure.ai.agents.models import (
    AzureAISearchQueryType,
    AzureAISearchTool,
    BingCustomSearchTool,
    BingGroundingTool,
    ToolSet,
)

from agent_console.config_schema import ToolConfig, ToolType
from agent_console.core.errors import BackendError, ToolConfigurationError
from agent_console.core.logging import get_logger

logger = get_logger(__name__)

# Custom search defaults
CUSTOM_SEARCH_COUNT = 5
CUSTOM_SEARCH_LANG = "en"
CUSTOM_SEARCH_MARKET = "en-us"

# Documents returned per Azure AI Search query
AI_SEARCH_TOP_K = 5


@dataclass(frozen=True, slots=True)
class ToolBundle:
    """Tool definitions and resources ready for create_agent()."""

    definitions: list[Any]
    resources: Any | None = None

    @property
    def is_empty(self) -> bool:
        return not self.definitions


def _build_tool(tool: ToolConfig, connection_id: str) -> Any:
    if tool.tool_type is ToolType.BING_GROUNDING:
        return BingGroundingTool(connection_id=connection_id)

    if tool.tool_type is ToolType.BING_CUSTOM_SEARCH:
        if not tool.configuration_name:
            raise ToolConfigurationError(
                "CustomBingGroundingSearch needs 'configuration_name' "
                "(the custom search instance name)",
                tool_type=tool.tool_type.value,
                connection_name=tool.connection_name,
            )
        return BingCustomSearchTool(
            connection_id=connection_id,
            instance_name=tool.configuration_name,
            count=CUSTOM_SEARCH_COUNT,
            set_lang=CUSTOM_SEARCH_LANG,
            market=CUSTOM_SEARCH_MARKET,
        )

    if tool.tool_type is ToolType.AZURE_AI_SEARCH:
        if not tool.configuration_name:
            raise ToolConfigurationError(
                "AzureAISearch needs 'configuration_name' (the search index name)",
                tool_type=tool.tool_type.value,
                connection_name=tool.connection_name,
            )
        return AzureAISearchTool(
            index_connection_id=connection_id,
            index_name=tool.configuration_name,
            query_type=AzureAISearchQueryType.SIMPLE,
            top_k=AI_SEARCH_TOP_K,
        )

    raise ToolConfigurationError(
        f"Unsupported tool type '{tool.tool_type}'",
        tool_type=str(tool.tool_type),
        connection_name=tool.connection_name,
    )


def build_tool_definitions(
    tools: list[ToolConfig],
    resolve_connection: Callable[[str], str],
) -> ToolBundle:
    """Build tool definitions for an agent.

    Args:
        tools: Tool bindings from the agent config
        resolve_connection: Maps a connection name to its connection id;
            raises BackendError when the connection does not exist

    Returns:
        ToolBundle with definitions and merged tool resources

    Raises:
        ToolConfigurationError: If any tool cannot be built
    """
    if not tools:
        return ToolBundle(definitions=[])

    toolset = ToolSet()
    for tool in tools:
        try:
            connection_id = resolve_connection(tool.connection_name)
        except ToolConfigurationError:
            raise
        except BackendError as e:
            raise ToolConfigurationError(
                f"Failed to resolve connection '{tool.connection_name}' for "
                f"{tool.tool_type.value}: {e}",
                tool_type=tool.tool_type.value,
                connection_name=tool.connection_name,
            ) from e

        try:
            built = _build_tool(tool, connection_id)
        except ValueError as e:
            # SDK tool constructors reject malformed connection ids
            raise ToolConfigurationError(
                f"Invalid {tool.tool_type.value} settings for connection "
                f"'{tool.connection_name}': {e}",
                tool_type=tool.tool_type.value,
                connection_name=tool.connection_name,
            ) from e

        try:
            toolset.add(built)
        except ValueError as e:
            raise ToolConfigurationError(
                f"Tool type {tool.tool_type.value} is listed more than once: {e}",
                tool_type=tool.tool_type.value,
                connection_name=tool.connection_name,
            ) from e

        logger.debug(
            "Tool definition built",
            tool_type=tool.tool_type.value,
            connection_name=tool.connection_name,
        )

    return ToolBundle(definitions=list(toolset.definitions), resources=toolset.resources)
