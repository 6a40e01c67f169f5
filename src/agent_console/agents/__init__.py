"""Agent service glue.

Provides:
- Agent validation and create-or-reuse against the project
- Grounding tool definitions (web search, custom search, document search)
- Conversation sessions with streamed responses and citations

Usage:
    from agent_console.agents import AgentRegistry, create_project_client

    client = create_project_client(config.project.endpoint, provider.credential())
    registry = AgentRegistry(client)
    session = registry.open_session(registry.create_or_reuse_agent(agent_config))

    for fragment in session.send("What changed in the latest release?"):
        print(fragment, end="")
    citations = session.get_citations()
"""

from agent_console.agents.backend import call_backend, create_project_client
from agent_console.agents.registry import AgentRegistry, AgentSelection, select_valid_agents
from agent_console.agents.session import Citation, ConversationSession
from agent_console.agents.tools import ToolBundle, build_tool_definitions

__all__ = [
    "AgentRegistry",
    "AgentSelection",
    "Citation",
    "ConversationSession",
    "ToolBundle",
    "build_tool_definitions",
    "call_backend",
    "create_project_client",
    "select_valid_agents",
]
