"""API dependencies."""

from typing import Optional
import logging

from fastapi import Header, HTTPException, Request, status
from pydantic import BaseModel

from evidence_sync.services import CustomConfigService, IntegrationService, SyncOrchestrator

logger = logging.getLogger(__name__)


class Caller(BaseModel):
    """Identity forwarded by the API gateway."""
    organization_id: str
    user_id: Optional[str] = None


async def get_caller(
    x_organization_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> Caller:
    """Read the caller identity the gateway attaches to every request."""
    if not x_organization_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Organization-ID header is required",
        )
    return Caller(organization_id=x_organization_id, user_id=x_user_id)


def _service(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.error(f"Service {name} requested before startup completed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return service


# Service dependencies
def get_integration_service(request: Request) -> IntegrationService:
    return _service(request, "integration_service")


def get_custom_config_service(request: Request) -> CustomConfigService:
    return _service(request, "custom_config_service")


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return _service(request, "orchestrator")
