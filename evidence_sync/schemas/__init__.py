"""API request and response schemas."""

from .integration import (
    IntegrationCreate,
    ConfigUpdate,
    IntegrationResponse,
    ConnectionTestResponse,
    SyncRequest,
    CustomConfigPayload,
    EndpointTestRequest,
    CodeValidationRequest,
    CodeTemplateResponse,
)

__all__ = [
    "IntegrationCreate",
    "ConfigUpdate",
    "IntegrationResponse",
    "ConnectionTestResponse",
    "SyncRequest",
    "CustomConfigPayload",
    "EndpointTestRequest",
    "CodeValidationRequest",
    "CodeTemplateResponse",
]
