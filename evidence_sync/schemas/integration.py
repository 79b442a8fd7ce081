"""Integration API schemas."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from evidence_sync.models import AuthType, ExecutionMode, IntegrationStatus, SyncFrequency


class IntegrationCreate(BaseModel):
    """Schema for creating an integration."""
    name: str = Field(min_length=1)
    connector_type: str = Field(min_length=1)
    description: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    sync_frequency: SyncFrequency = SyncFrequency.MANUAL


class ConfigUpdate(BaseModel):
    """Partial config update; masked values keep the stored secret."""
    config: Dict[str, Any]


class IntegrationResponse(BaseModel):
    """Integration with its config masked for display."""
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    connector_type: str
    config: Dict[str, Any]
    sync_frequency: SyncFrequency
    status: IntegrationStatus
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    total_evidence_collected: int = 0
    last_evidence_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ConnectionTestResponse(BaseModel):
    """Connection test response."""
    success: bool
    message: str
    details: Optional[Dict[str, Any]] = None
    tested_at: datetime


class SyncRequest(BaseModel):
    triggered_by: str = "manual"


class CustomConfigPayload(BaseModel):
    """Custom integration config as sent by the builder UI (camelCase)."""

    model_config = ConfigDict(populate_by_name=True)

    mode: ExecutionMode = ExecutionMode.VISUAL
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    endpoints: List[Dict[str, Any]] = Field(default_factory=list)
    auth_type: Optional[AuthType] = Field(default=None, alias="authType")
    auth_config: Optional[Dict[str, Any]] = Field(default=None, alias="authConfig")
    response_mapping: Optional[Dict[str, Any]] = Field(default=None, alias="responseMapping")
    custom_code: Optional[str] = Field(default=None, alias="customCode")


class EndpointTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    endpoint_index: int = Field(default=0, ge=0, alias="endpointIndex")
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    auth_config: Optional[Dict[str, Any]] = Field(default=None, alias="authConfig")


class CodeValidationRequest(BaseModel):
    code: str


class CodeTemplateResponse(BaseModel):
    template: str
