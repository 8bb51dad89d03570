"""
Collaborators supplied by the host application.

The moderation client and the agent under test live outside evalguard.
They are either registered in-process (set_moderation_client,
set_agent_executor) or loaded from a "package.module:factory" path in
settings.
"""

from importlib import import_module
from typing import Any, Optional

from evalguard.config import settings
from evalguard.errors import InvalidConfiguration
from evalguard.services.dataset_runner import AgentExecutor
from evalguard.services.moderation_guardrail import ModerationClient

_moderation_client: Optional[ModerationClient] = None
_agent_executor: Optional[AgentExecutor] = None


def load_factory(path: str) -> Any:
    """
    Import "package.module:factory" and call the factory.

    Raises:
        InvalidConfiguration: Malformed path or missing attribute
    """
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise InvalidConfiguration(f"Expected 'package.module:factory', got {path!r}")

    try:
        factory = getattr(import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise InvalidConfiguration(f"Cannot load {path!r}: {e}") from e

    return factory()


def set_moderation_client(client: Optional[ModerationClient]) -> None:
    global _moderation_client
    _moderation_client = client


def get_moderation_client() -> ModerationClient:
    """
    Return the registered moderation client, loading it from settings on
    first use.

    Raises:
        InvalidConfiguration: No client registered or configured
    """
    global _moderation_client
    if _moderation_client is None:
        if not settings.moderation_client:
            raise InvalidConfiguration(
                "No moderation client configured (set EVALGUARD_MODERATION_CLIENT)"
            )
        _moderation_client = load_factory(settings.moderation_client)
    return _moderation_client


def set_agent_executor(executor: Optional[AgentExecutor]) -> None:
    global _agent_executor
    _agent_executor = executor


def get_agent_executor() -> Optional[AgentExecutor]:
    """Return the agent executor, or None to score existing traces only."""
    global _agent_executor
    if _agent_executor is None and settings.agent_executor:
        _agent_executor = load_factory(settings.agent_executor)
    return _agent_executor
