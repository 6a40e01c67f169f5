"""Agent service client construction and error translation.

The project client is built from whatever credential the active
CredentialProvider hands out, so application and delegated mode share the
same registry and session code.

Every SDK call goes through call_backend(), which logs failures with the
operation name and identifiers and re-raises them as BackendError.
"""

from collections.abc import Callable
from typing import Any, TypeVar

from azure.ai.projects import AIProjectClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError

from agent_console.core.errors import AuthenticationError, BackendError
from agent_console.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def create_project_client(endpoint: str, credential: TokenCredential) -> AIProjectClient:
    """Create the Azure AI Foundry project client.

    Args:
        endpoint: Project endpoint from config
        credential: Credential from the active CredentialProvider

    Returns:
        AIProjectClient; its .agents and .connections are used by the registry
    """
    logger.debug("Creating project client", endpoint=endpoint)
    return AIProjectClient(endpoint=endpoint, credential=credential)


def call_backend(operation: str, call: Callable[[], T], **context: Any) -> T:
    """Run one agent service call, translating SDK errors.

    Args:
        operation: Short operation name for logs and the raised error
        call: Zero-argument callable performing the SDK call
        **context: Identifiers to log with a failure (agent_id, thread_id, ...)

    Returns:
        Whatever the call returns

    Raises:
        AuthenticationError: If our own credential fails while the SDK asks for a token
        BackendError: If the service call fails
    """
    try:
        return call()
    except AuthenticationError:
        raise
    except ClientAuthenticationError as e:
        logger.error("Agent service rejected credentials", operation=operation, error=str(e), **context)
        raise BackendError(
            f"{operation} failed: the agent service rejected the credentials ({e}). "
            "Check the role assignment on the project for this identity.",
            operation=operation,
            context=context,
        ) from e
    except AzureError as e:
        logger.error("Agent service call failed", operation=operation, error=str(e), **context)
        raise BackendError(f"{operation} failed: {e}", operation=operation, context=context) from e
