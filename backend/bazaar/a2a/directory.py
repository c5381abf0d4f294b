"""
Agent endpoint directory.

WHAT: Resolve an agent id to its A2A negotiation endpoint
WHY: The orchestrator receives the directory explicitly instead of reading a global
     registry, so tests swap in their own
HOW: AgentDirectory protocol with an in-memory registry and a URL-template resolver
"""

from typing import Dict, Optional, Protocol

from ..core.config import settings
from ..utils.exceptions import AgentEndpointNotFoundException
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AgentDirectory(Protocol):
    """Endpoint lookup contract."""

    async def resolve(self, agent_id: int) -> str:
        """Return the A2A endpoint for an agent or raise AgentEndpointNotFoundException."""
        ...


class TemplateAgentDirectory:
    """Every agent is served at a URL derived from its id."""

    def __init__(self, template: str | None = None):
        self.template = template or settings.AGENT_ENDPOINT_TEMPLATE

    async def resolve(self, agent_id: int) -> str:
        return self.template.format(agent_id=agent_id)


class InMemoryAgentDirectory:
    """
    Process-lifetime registry of agent endpoints.

    Unknown ids fall back to `fallback` when one is given, otherwise they raise.
    """

    def __init__(
        self,
        endpoints: Dict[int, str] | None = None,
        fallback: Optional[AgentDirectory] = None,
    ):
        self._endpoints: Dict[int, str] = dict(endpoints or {})
        self.fallback = fallback

    def register(self, agent_id: int, endpoint: str) -> None:
        self._endpoints[agent_id] = endpoint
        logger.info(f"Registered endpoint for agent {agent_id}: {endpoint}")

    def unregister(self, agent_id: int) -> bool:
        return self._endpoints.pop(agent_id, None) is not None

    def registered(self) -> Dict[int, str]:
        return dict(self._endpoints)

    async def resolve(self, agent_id: int) -> str:
        endpoint = self._endpoints.get(agent_id)
        if endpoint:
            return endpoint
        if self.fallback is not None:
            return await self.fallback.resolve(agent_id)
        raise AgentEndpointNotFoundException(agent_id)
