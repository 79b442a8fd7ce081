"""Integration, custom execution config and auth models."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


CUSTOM_CONNECTOR = "custom"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrationStatus(str, Enum):
    """Integration connection status."""
    PENDING_SETUP = "pending_setup"
    ACTIVE = "active"
    ERROR = "error"
    INACTIVE = "inactive"


class SyncFrequency(str, Enum):
    """How often an external scheduler should trigger a sync."""
    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class ExecutionMode(str, Enum):
    """Authoring mode of a custom integration."""
    VISUAL = "visual"
    CODE = "code"


class AuthType(str, Enum):
    """Supported authentication schemes for custom integrations."""
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"
    OAUTH2 = "oauth2"


class Integration(BaseModel):
    """An organization's configured connection to one external system."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    organization_id: str
    name: str
    description: Optional[str] = None
    connector_type: str

    # Sensitive leaves are ciphertext while persisted
    config: Dict[str, Any] = Field(default_factory=dict)

    sync_frequency: SyncFrequency = SyncFrequency.MANUAL
    status: IntegrationStatus = IntegrationStatus.PENDING_SETUP

    # Sync bookkeeping
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    total_evidence_collected: int = 0
    last_evidence_at: Optional[datetime] = None

    # Metadata
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_custom(self) -> bool:
        return self.connector_type == CUSTOM_CONNECTOR


class CustomConnectorConfig(BaseModel):
    """Open config map for the generic custom connector."""

    model_config = ConfigDict(extra="allow")


# Endpoint specs

HTTP_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH"}


class ResponseMapping(BaseModel):
    """Paths into an endpoint response used to build evidence."""
    title: Optional[str] = None
    description: Optional[str] = None
    data: Optional[str] = None


class EndpointSpec(BaseModel):
    """One configured HTTP call of a visual-mode integration."""

    model_config = ConfigDict(populate_by_name=True)

    method: str
    path: str
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None
    response_mapping: Optional[ResponseMapping] = Field(default=None, alias="responseMapping")
    name: Optional[str] = None
    description: Optional[str] = None

    @field_validator("method")
    @classmethod
    def check_method(cls, value: str) -> str:
        method = value.upper().strip()
        if method not in HTTP_METHODS:
            raise ValueError(f"method must be one of {sorted(HTTP_METHODS)}")
        return method

    @field_validator("path")
    @classmethod
    def check_path(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("path is required")
        return value.strip()

    @property
    def label(self) -> str:
        return self.name or f"{self.method} {self.path}"


class CustomExecutionConfig(BaseModel):
    """Execution config owned 1:1 by a custom integration."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    integration_id: str
    mode: ExecutionMode = ExecutionMode.VISUAL

    base_url: Optional[str] = None
    endpoints: List[EndpointSpec] = Field(default_factory=list)
    auth_type: Optional[AuthType] = None
    # Sensitive leaves are ciphertext while persisted
    auth_config: Optional[Dict[str, Any]] = None
    response_mapping: Optional[Dict[str, Any]] = None

    custom_code: Optional[str] = None

    last_test_at: Optional[datetime] = None
    last_test_status: Optional[str] = None
    last_test_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Auth config shapes (wire names are camelCase)

class ApiKeyAuthConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key_name: str = Field(alias="keyName")
    key_value: str = Field(alias="keyValue")
    location: str = "header"

    @field_validator("location")
    @classmethod
    def check_location(cls, value: str) -> str:
        if value not in ("header", "query"):
            raise ValueError("location must be 'header' or 'query'")
        return value


class BearerAuthConfig(BaseModel):
    token: str


class BasicAuthConfig(BaseModel):
    username: str
    password: str


class OAuth2AuthConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_url: str = Field(alias="tokenUrl")
    client_id: str = Field(alias="clientId")
    client_secret: str = Field(alias="clientSecret")
    scope: Optional[str] = None


AuthConfig = Union[ApiKeyAuthConfig, BearerAuthConfig, BasicAuthConfig, OAuth2AuthConfig]

AUTH_CONFIG_MODELS = {
    AuthType.API_KEY: ApiKeyAuthConfig,
    AuthType.BEARER: BearerAuthConfig,
    AuthType.BASIC: BasicAuthConfig,
    AuthType.OAUTH2: OAuth2AuthConfig,
}


def parse_auth_config(auth_type: Union[AuthType, str], auth_config: Dict[str, Any]) -> AuthConfig:
    """Validate a decrypted auth config map against its auth type's shape.

    Raises ``pydantic.ValidationError`` for a shape mismatch and ``ValueError``
    for an unknown auth type.
    """
    model = AUTH_CONFIG_MODELS[AuthType(auth_type)]
    return model.model_validate(auth_config)
