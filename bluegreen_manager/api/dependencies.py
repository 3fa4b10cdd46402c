"""
Shared dependencies for route modules.

Provides orchestrator access from app state and the bearer-token check
guarding deployment triggers.
"""

import hmac
import logging
from typing import Dict, Optional

from fastapi import Header, HTTPException, Request

from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator

logger = logging.getLogger(__name__)


def get_deployment_orchestrator(request: Request) -> DeploymentOrchestrator:
    """
    Get deployment orchestrator from app state.

    Raises:
        HTTPException: If orchestrator not available
    """
    orchestrator = getattr(request.app.state, "deployment_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Deployment orchestrator not initialized")
    return orchestrator


async def deployment_auth(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Dict[str, str]:
    """
    Verify the deployment token when one is configured.

    Args:
        request: FastAPI request object
        authorization: Bearer token from Authorization header

    Returns:
        Dict identifying the caller

    Raises:
        HTTPException: If token missing or invalid
    """
    expected = getattr(request.app.state, "deploy_token", None)
    if not expected:
        return {"id": "anonymous"}

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    # Extract token from "Bearer <token>" format
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization format")

    if not hmac.compare_digest(parts[1].encode(), expected.encode()):
        logger.warning("Rejected deployment trigger with invalid token")
        raise HTTPException(status_code=401, detail="Invalid deployment token")

    return {"id": "ci"}
