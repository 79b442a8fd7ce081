"""Custom integration builder endpoints."""

import logging

from fastapi import APIRouter, Depends

from evidence_sync.api.dependencies import (
    Caller,
    get_caller,
    get_custom_config_service,
    get_orchestrator,
)
from evidence_sync.schemas import (
    CodeTemplateResponse,
    CodeValidationRequest,
    CustomConfigPayload,
    EndpointTestRequest,
)
from evidence_sync.services import CustomConfigService, SyncOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/custom-config/template", response_model=CodeTemplateResponse)
async def get_code_template(service: CustomConfigService = Depends(get_custom_config_service)):
    return CodeTemplateResponse(template=service.get_code_template())


@router.post("/custom-config/validate")
async def validate_code(
    body: CodeValidationRequest,
    caller: Caller = Depends(get_caller),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Lint a script without running it."""
    return orchestrator.validate_code(body.code).model_dump()


@router.get("/{integration_id}/custom-config")
async def get_custom_config(
    integration_id: str,
    caller: Caller = Depends(get_caller),
    service: CustomConfigService = Depends(get_custom_config_service),
):
    config = await service.get_config(integration_id, caller.organization_id)
    return config.model_dump(mode="json")


@router.put("/{integration_id}/custom-config")
async def save_custom_config(
    integration_id: str,
    body: CustomConfigPayload,
    caller: Caller = Depends(get_caller),
    service: CustomConfigService = Depends(get_custom_config_service),
):
    """Validate and save a custom config; auth secrets are stored encrypted."""
    config = await service.save_config(integration_id, caller.organization_id, caller.user_id, body)
    return config.model_dump(mode="json")


@router.post("/{integration_id}/custom-config/test")
async def test_custom_config(
    integration_id: str,
    body: EndpointTestRequest = EndpointTestRequest(),
    caller: Caller = Depends(get_caller),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Try one endpoint (visual mode) or the script (code mode) without creating evidence."""
    result = await orchestrator.test_endpoint(
        integration_id,
        organization_id=caller.organization_id,
        user_id=caller.user_id,
        endpoint_index=body.endpoint_index,
        base_url=body.base_url,
        auth_config=body.auth_config,
    )
    return result.model_dump(by_alias=True)
