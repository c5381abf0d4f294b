"""A2A message protocol layer."""

from .client import A2AClient
from .directory import AgentDirectory, InMemoryAgentDirectory, TemplateAgentDirectory
from .types import (
    A2AError,
    A2AReply,
    A2AResponseError,
    CounterpartyUnreachableError,
)

__all__ = [
    "A2AClient",
    "AgentDirectory",
    "InMemoryAgentDirectory",
    "TemplateAgentDirectory",
    "A2AError",
    "A2AReply",
    "A2AResponseError",
    "CounterpartyUnreachableError",
]
