"""Data models for the evidence sync service."""

from .integration import (
    Integration,
    IntegrationStatus,
    SyncFrequency,
    CUSTOM_CONNECTOR,
    utcnow,
    CustomConnectorConfig,
    CustomExecutionConfig,
    ExecutionMode,
    EndpointSpec,
    ResponseMapping,
    AuthType,
    ApiKeyAuthConfig,
    BearerAuthConfig,
    BasicAuthConfig,
    OAuth2AuthConfig,
    parse_auth_config,
)
from .evidence import Evidence, EvidenceItem, SyncResult, AuditEntry
from .sync import SyncJob, SyncLogLine, SyncStatus, SyncOutcome, EndpointTestResult, ScriptValidationResult

__all__ = [
    "Integration",
    "IntegrationStatus",
    "SyncFrequency",
    "CUSTOM_CONNECTOR",
    "utcnow",
    "CustomConnectorConfig",
    "CustomExecutionConfig",
    "ExecutionMode",
    "EndpointSpec",
    "ResponseMapping",
    "AuthType",
    "ApiKeyAuthConfig",
    "BearerAuthConfig",
    "BasicAuthConfig",
    "OAuth2AuthConfig",
    "parse_auth_config",
    "Evidence",
    "EvidenceItem",
    "SyncResult",
    "AuditEntry",
    "SyncJob",
    "SyncLogLine",
    "SyncStatus",
    "SyncOutcome",
    "EndpointTestResult",
    "ScriptValidationResult",
]
