"""
Agent endpoint directory routes.

WHAT: Register and look up the A2A endpoint of an agent
WHY: The orchestrator resolves sellers (and buyers) through the directory
HOW: Thin wrapper over InMemoryAgentDirectory; unregistered ids fall back to the template
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_directory
from ....a2a.directory import InMemoryAgentDirectory
from ....models.api_schemas import AgentEndpointResponse, RegisterEndpointRequest
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/agents")


@router.post("/{agent_id}/endpoint", response_model=AgentEndpointResponse)
async def register_endpoint(
    agent_id: int,
    request: RegisterEndpointRequest,
    directory: InMemoryAgentDirectory = Depends(get_directory),
):
    directory.register(agent_id, request.endpoint)
    return AgentEndpointResponse(agent_id=agent_id, endpoint=request.endpoint)


@router.get("/{agent_id}/endpoint", response_model=AgentEndpointResponse)
async def get_endpoint(
    agent_id: int,
    directory: InMemoryAgentDirectory = Depends(get_directory),
):
    """Resolve an endpoint; 404 when neither registered nor covered by the fallback."""
    endpoint = await directory.resolve(agent_id)
    return AgentEndpointResponse(agent_id=agent_id, endpoint=endpoint)
