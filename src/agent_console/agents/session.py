"""Conversation session with one remote agent.

A session owns one backend thread for the whole multi-turn conversation. Each
send() posts the operator's message and returns a lazy iterator over the
streamed response text. Citations are read from the agent's last message once
that iterator has been drained.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from azure.ai.agents.models import AgentStreamEvent, MessageRole
from azure.core.exceptions import AzureError

from agent_console.agents.backend import call_backend
from agent_console.core.errors import BackendError
from agent_console.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Citation:
    """A source URL returned with a response. index is 1-based."""

    index: int
    url: str
    title: str | None = None


def extract_fragment(event: Any) -> str | None:
    """Return the response text carried by one stream event, if any.

    Stream events are (event_type, event_data, function_result) tuples. Run
    failures and error events are logged and yield no text.
    """
    event_type, event_data, _ = event

    if event_type == AgentStreamEvent.THREAD_MESSAGE_DELTA:
        return event_data.text

    if event_type == AgentStreamEvent.THREAD_RUN_FAILED:
        logger.error(
            "Agent run failed",
            run_id=getattr(event_data, "id", None),
            last_error=str(getattr(event_data, "last_error", None)),
        )
    elif event_type == AgentStreamEvent.ERROR:
        logger.error("Agent stream reported an error", data=str(event_data))

    return None


class ConversationSession:
    """A multi-turn conversation with one agent.

    Attributes:
        agent_id: Remote agent id
        agent_name: Agent name, for logs
        thread_id: Backend thread id, None until the first send()
    """

    def __init__(self, agents_client: Any, agent_id: str, agent_name: str = ""):
        self._agents = agents_client
        self.agent_id = agent_id
        self.agent_name = agent_name
        self.thread_id: str | None = None

    def send(self, text: str) -> Iterator[str]:
        """Post a user message and stream the agent's answer.

        The thread and message are created before this returns; the run is
        started when iteration begins. The iterator is finite and can only be
        consumed once.

        Args:
            text: The operator's message

        Returns:
            Iterator over non-empty text fragments in arrival order

        Raises:
            ValueError: If text is blank
            BackendError: If the thread or message cannot be created
        """
        if not text or not text.strip():
            raise ValueError("Message text cannot be empty")

        thread_id = self._ensure_thread()
        call_backend(
            "create_message",
            lambda: self._agents.messages.create(
                thread_id=thread_id,
                role=MessageRole.USER,
                content=text,
            ),
            agent_id=self.agent_id,
            thread_id=thread_id,
        )
        logger.debug("Message posted", thread_id=thread_id, length=len(text))
        return self._stream(thread_id)

    def get_citations(self) -> list[Citation]:
        """URL citations attached to the agent's last message.

        Returns:
            Citations in annotation order, empty if there are none

        Raises:
            BackendError: If the messages cannot be read
        """
        if self.thread_id is None:
            logger.warning("No active thread to get citations from")
            return []

        thread_id = self.thread_id
        message = call_backend(
            "get_last_agent_message",
            lambda: self._agents.messages.get_last_message_by_role(
                thread_id=thread_id,
                role=MessageRole.AGENT,
            ),
            agent_id=self.agent_id,
            thread_id=thread_id,
        )
        if message is None:
            return []

        citations: list[Citation] = []
        for annotation in message.url_citation_annotations:
            url_citation = annotation.url_citation
            citations.append(
                Citation(
                    index=len(citations) + 1,
                    url=url_citation.url,
                    title=getattr(url_citation, "title", None),
                )
            )

        if not citations:
            logger.debug("No citations found for current thread", thread_id=thread_id)
        return citations

    def _ensure_thread(self) -> str:
        if self.thread_id is None:
            thread = call_backend(
                "create_thread",
                self._agents.threads.create,
                agent_id=self.agent_id,
            )
            self.thread_id = thread.id
            logger.info("Thread created", agent_name=self.agent_name, thread_id=thread.id)
        return self.thread_id

    def _stream(self, thread_id: str) -> Iterator[str]:
        stream = call_backend(
            "create_run_stream",
            lambda: self._agents.runs.stream(thread_id=thread_id, agent_id=self.agent_id),
            agent_id=self.agent_id,
            thread_id=thread_id,
        )

        fragments = 0
        with stream:
            try:
                for event in stream:
                    try:
                        fragment = extract_fragment(event)
                    except Exception as e:
                        logger.warning("Error processing streaming update", error=str(e))
                        continue
                    if fragment:
                        fragments += 1
                        yield fragment
            except AzureError as e:
                logger.error(
                    "Response stream interrupted",
                    agent_id=self.agent_id,
                    thread_id=thread_id,
                    error=str(e),
                )
                raise BackendError(
                    f"Response stream interrupted: {e}",
                    operation="stream_run",
                    context={"agent_id": self.agent_id, "thread_id": thread_id},
                ) from e

        logger.debug("Response stream drained", thread_id=thread_id, fragments=fragments)
