"""
Status and health check endpoints.

WHAT: Health monitoring for the LLM provider, database and background pipelines
WHY: Quick diagnostics for agents and ops
HOW: FastAPI endpoints calling provider ping and DB ping
"""

from fastapi import APIRouter, Request

from ....llm.provider_factory import get_provider
from ....core.database import ping_database
from ....core.config import settings
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _ping_llm() -> dict:
    try:
        provider = get_provider()
        llm_status = await provider.ping()
        return {
            "available": llm_status.available,
            "base_url": llm_status.base_url,
            "models": llm_status.models,
            "error": llm_status.error,
        }
    except Exception as e:
        logger.error(f"Failed to get LLM status: {e}")
        return {"available": False, "base_url": "unknown", "models": None, "error": str(e)}


@router.get("/llm/status")
async def llm_status(request: Request):
    """
    Check LLM provider and database status.

    Returns:
        JSON with provider status and database status
    """
    return {
        "llm": await _ping_llm(),
        "database": ping_database(request.app.state.engine),
    }


@router.get("/health")
async def health_check(request: Request):
    """
    Overall application health check.

    Healthy only if both the LLM provider and the database answer.
    """
    llm = await _ping_llm()
    db_status = ping_database(request.app.state.engine)
    healthy = llm["available"] and db_status["available"]

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.APP_VERSION,
        "app_name": settings.APP_NAME,
        "components": {
            "llm": {
                "available": llm["available"],
                "provider": settings.LLM_PROVIDER,
            },
            "database": {
                "available": db_status["available"],
            },
            "auto_search": {
                "running": request.app.state.orchestrator.running_count(),
            },
        },
    }
