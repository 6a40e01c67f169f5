"""Interactive console: agent menu and chat loop.

One turn at a time: the response stream for a turn is printed fragment by
fragment and fully drained before citations are fetched and before the next
prompt is shown.

Failures while starting the selected agent propagate to the caller and end
the run. Any failure inside a turn is shown and logged, and the loop carries
on with the next prompt.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING

from rich.console import Console

from agent_console.core.errors import AgentSelectionError, AuthenticationError, BackendError
from agent_console.core.logging import get_logger, set_correlation_id

if TYPE_CHECKING:
    from agent_console.agents.registry import AgentRegistry
    from agent_console.agents.session import Citation, ConversationSession
    from agent_console.auth.credentials import CredentialProvider
    from agent_console.config_schema import AgentConfig

logger = get_logger(__name__)

EXIT_COMMAND = "exit"


class InteractiveShell:
    """Drives agent selection and the chat loop on a rich Console.

    Args:
        console: Where prompts, answers and citations are printed
        registry: Registry bound to the active credential
        credentials: Active permission mode
        agents: Selectable agents, already validated, in config order
        read_line: Reads one line of operator input for a prompt
            (defaults to console.input)
    """

    def __init__(
        self,
        console: Console,
        registry: AgentRegistry,
        credentials: CredentialProvider,
        agents: list[AgentConfig],
        read_line: Callable[[str], str] | None = None,
    ) -> None:
        self.console = console
        self.registry = registry
        self.credentials = credentials
        self.agents = agents
        self._read_line = read_line or console.input

    def show_menu(self) -> None:
        self.console.print("Available agents:")
        for number, agent in enumerate(self.agents, start=1):
            self.console.print(f"{number}. {agent.name}", markup=False)

    def choose_agent(self) -> AgentConfig:
        """Show the numbered menu and read a 1-based selection.

        Raises:
            AgentSelectionError: If the input is not a number in range
        """
        self.show_menu()
        selection = self._read_line(f"Select an agent (1-{len(self.agents)}): ").strip()

        try:
            index = int(selection)
        except ValueError:
            index = 0
        if index < 1 or index > len(self.agents):
            logger.error("Invalid agent selection", selection=selection)
            raise AgentSelectionError(
                f"Invalid agent selection '{selection}'. Enter a number between 1 and {len(self.agents)}."
            )
        return self.agents[index - 1]

    def start(self, agent_config: AgentConfig) -> ConversationSession:
        """Prepare credentials, create or reuse the agent and open a session.

        Raises:
            AuthenticationError: If delegated sign-in fails
            BackendError: If the agent cannot be created
        """
        logger.info("Initializing agent", agent_name=agent_config.name, mode=self.credentials.mode)
        self.credentials.prepare()

        if self.credentials.mode == "delegated":
            identity = self.credentials.describe_identity()
            self.console.print(
                f"Initializing agent with delegated permissions for: [bold]{identity}[/bold]"
            )

        agent = self.registry.create_or_reuse_agent(agent_config)
        logger.info(
            "Agent initialized",
            agent_name=agent_config.name,
            agent_id=agent.id,
            mode=self.credentials.mode,
        )
        if self.credentials.mode == "delegated":
            self.console.print(
                f"[green]✓[/green] Agent '{agent_config.name}' ready with user-level permissions"
            )
        return self.registry.open_session(agent)

    def run_turn(self, session: ConversationSession, text: str) -> bool:
        """Send one message, print the streamed answer, then its citations.

        Returns:
            True if the turn completed, False if it was aborted by an error
        """
        set_correlation_id(str(uuid.uuid4()))
        try:
            logger.info("Processing query", agent_name=session.agent_name, length=len(text))
            if self.credentials.mode == "delegated":
                self.console.print(
                    f"[dim]Processing query as user: {self.credentials.describe_identity()}[/dim]"
                )

            self.console.print("[bold]Assistant:[/bold] ", end="")
            for fragment in session.send(text):
                self.console.print(fragment, end="", markup=False, highlight=False, soft_wrap=True)
            self.console.print()

            self._print_citations(session)
            return True
        except AuthenticationError as e:
            self.console.print(f"\n[red]Authentication error:[/red] {e}")
            logger.error("Turn aborted by authentication failure", error=str(e))
            return False
        except BackendError as e:
            self.console.print(f"\n[red]Agent service error:[/red] {e}")
            logger.error(
                "Turn aborted by agent service failure",
                operation=e.operation,
                error=str(e),
                **e.context,
            )
            return False
        except Exception as e:
            self.console.print(f"\n[red]Unexpected error:[/red] {e}", highlight=False)
            logger.error(
                "Turn aborted by unexpected error",
                agent_name=session.agent_name,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            return False
        finally:
            set_correlation_id(None)

    def chat_loop(self, session: ConversationSession) -> int:
        """Read messages until empty input, EOF or 'exit'.

        'exit' matches case-insensitively but exactly, so " exit " is sent as
        a message. Whitespace-only input counts as empty.

        Returns:
            Number of turns that completed
        """
        completed = 0
        while True:
            try:
                text = self._read_line("\n[bold]You:[/bold] ")
            except EOFError:
                break

            if not text.strip() or text.lower() == EXIT_COMMAND:
                break

            if self.run_turn(session, text):
                completed += 1
        return completed

    def run(self, agent_config: AgentConfig | None = None) -> int:
        """Full interactive flow: select (unless given), start, chat.

        Returns:
            Number of completed turns
        """
        selected = agent_config or self.choose_agent()
        session = self.start(selected)
        turns = self.chat_loop(session)
        logger.info("Chat session finished", agent_name=selected.name, turns=turns)
        return turns

    def _print_citations(self, session: ConversationSession) -> None:
        try:
            citations = session.get_citations()
        except BackendError as e:
            logger.error(
                "Failed to display citations",
                agent_name=session.agent_name,
                error=str(e),
            )
            return

        if citations:
            self.print_citations(citations)

    def print_citations(self, citations: list[Citation]) -> None:
        self.console.print()
        self.console.print("Sources:")
        self.console.print("-" * 50)
        for citation in citations:
            self.console.print(f"{citation.index}. {citation.url}", markup=False, highlight=False)
        self.console.print()
