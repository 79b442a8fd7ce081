"""Integration management API endpoints."""

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, status

from evidence_sync.api.dependencies import (
    Caller,
    get_caller,
    get_integration_service,
    get_orchestrator,
)
from evidence_sync.models import Integration
from evidence_sync.schemas import (
    ConfigUpdate,
    ConnectionTestResponse,
    IntegrationCreate,
    IntegrationResponse,
    SyncRequest,
)
from evidence_sync.services import IntegrationService, SyncOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


def _response(integration: Integration) -> IntegrationResponse:
    return IntegrationResponse(**integration.model_dump())


@router.post("/", response_model=IntegrationResponse, status_code=status.HTTP_201_CREATED)
async def create_integration(
    body: IntegrationCreate,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
):
    """Create a new integration; its config is stored encrypted."""
    integration = await service.create_integration(
        organization_id=caller.organization_id,
        user_id=caller.user_id,
        name=body.name,
        connector_type=body.connector_type,
        config=body.config,
        description=body.description,
        sync_frequency=body.sync_frequency,
    )
    return _response(integration)


@router.get("/{integration_id}", response_model=IntegrationResponse)
async def get_integration(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
):
    """Get integration details with secrets masked."""
    return _response(await service.get_integration(integration_id, caller.organization_id))


@router.patch("/{integration_id}/config", response_model=IntegrationResponse)
async def update_config(
    integration_id: str,
    body: ConfigUpdate,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
):
    """Update integration configuration."""
    integration = await service.update_config(
        integration_id, caller.organization_id, caller.user_id, body.config
    )
    return _response(integration)


@router.post("/{integration_id}/test-connection", response_model=ConnectionTestResponse)
async def test_connection(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: IntegrationService = Depends(get_integration_service),
):
    """Test integration connection."""
    result = await service.test_connection(integration_id, caller.organization_id, caller.user_id)
    return ConnectionTestResponse(
        success=result.success,
        message=result.message,
        details=result.details,
        tested_at=datetime.now(timezone.utc),
    )


@router.post("/{integration_id}/sync")
async def trigger_sync(
    integration_id: str,
    body: SyncRequest = SyncRequest(),
    caller: Caller = Depends(get_caller),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Run a sync now and return its outcome."""
    outcome = await orchestrator.execute_sync(
        integration_id,
        organization_id=caller.organization_id,
        user_id=caller.user_id,
        triggered_by=body.triggered_by,
    )
    return outcome.model_dump(by_alias=True, exclude_none=True)
