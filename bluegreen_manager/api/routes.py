"""
Deployment routes - trigger, status and history.
"""

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator
from bluegreen_manager.logging_config import API_LOGGER
from bluegreen_manager.models import DeploymentOutcome, DeployRequest

from .dependencies import deployment_auth, get_deployment_orchestrator

logger = logging.getLogger(API_LOGGER)

router = APIRouter(tags=["deployment"])

# Failed outcomes are reported with the full result body
OUTCOME_STATUS_CODES = {
    DeploymentOutcome.SUCCESS: 200,
    DeploymentOutcome.PROVISION_FAILED: 502,
    DeploymentOutcome.HEALTH_CHECK_FAILED: 502,
    DeploymentOutcome.ROUTER_APPLY_FAILED: 502,
    DeploymentOutcome.ABORTED: 504,
}


@router.get("/health")
async def health() -> Dict[str, str]:
    """Liveness of the manager itself."""
    return {"status": "healthy"}


@router.post("/deployments")
async def deploy(
    body: DeployRequest,
    orchestrator: DeploymentOrchestrator = Depends(get_deployment_orchestrator),
    caller: Dict[str, str] = Depends(deployment_auth),
) -> JSONResponse:
    """
    Deploy a version to the inactive slot and switch traffic to it.

    Blocks until the deployment finishes. A concurrent request is
    rejected with 409 rather than queued.
    """
    logger.info(f"Deploy of {body.version} requested by {caller['id']}")
    result = await orchestrator.deploy(body.version)

    content: Dict[str, Any] = result.model_dump(mode="json")
    content["exit_code"] = result.exit_code
    return JSONResponse(status_code=OUTCOME_STATUS_CODES[result.attempt.outcome], content=content)


@router.get("/status")
async def get_status(
    orchestrator: DeploymentOrchestrator = Depends(get_deployment_orchestrator),
) -> Dict[str, Any]:
    """Active slot, state machine state and last attempt."""
    return await orchestrator.status()


@router.get("/deployments")
async def get_history(
    limit: int = Query(10, description="Maximum number of attempts to return"),
    orchestrator: DeploymentOrchestrator = Depends(get_deployment_orchestrator),
) -> List[Dict[str, Any]]:
    """Deployment attempts, newest first."""
    attempts = await orchestrator.history(limit=limit)
    return [attempt.model_dump(mode="json") for attempt in attempts]
