"""Integration service for creating, reading and testing integrations."""

from typing import Any, Dict, Optional, Type
import logging

import httpx

from evidence_sync.core.errors import IntegrationError, NotFoundError
from evidence_sync.integrations import ConnectionTestResult, ConnectorRegistry
from evidence_sync.models import (
    AuditEntry,
    CUSTOM_CONNECTOR,
    ExecutionMode,
    Integration,
    IntegrationStatus,
    SyncFrequency,
)
from evidence_sync.services.sync_orchestrator import SyncOrchestrator
from evidence_sync.stores import AuditLogger, CustomConfigStore, IntegrationStore
from evidence_sync.utils.crypto import CredentialVault, merge_config

logger = logging.getLogger(__name__)


class IntegrationService:
    """Service for managing integrations.

    Configs are encrypted before they are stored and only ever leave the
    service masked.
    """

    def __init__(
        self,
        integrations: IntegrationStore,
        custom_configs: CustomConfigStore,
        audit: AuditLogger,
        vault: CredentialVault,
        orchestrator: SyncOrchestrator,
        http_client: httpx.AsyncClient,
        connectors: Type[ConnectorRegistry] = ConnectorRegistry,
        timeout: float = 30.0,
        retry_attempts: int = 2,
    ):
        self.integrations = integrations
        self.custom_configs = custom_configs
        self.audit = audit
        self.vault = vault
        self.orchestrator = orchestrator
        self.http_client = http_client
        self.connectors = connectors
        self.timeout = timeout
        self.retry_attempts = retry_attempts

    async def create_integration(
        self,
        organization_id: str,
        user_id: Optional[str],
        name: str,
        connector_type: str,
        config: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        sync_frequency: SyncFrequency = SyncFrequency.MANUAL,
    ) -> Integration:
        """Create an integration in ``pending_setup`` and return its masked view."""
        config = config or {}
        if connector_type != CUSTOM_CONNECTOR:
            self.connectors.validate_config(connector_type, config)

        integration = await self.integrations.create(
            Integration(
                organization_id=organization_id,
                name=name,
                description=description,
                connector_type=connector_type,
                config=self.vault.encrypt_config(config),
                sync_frequency=sync_frequency,
                status=IntegrationStatus.PENDING_SETUP,
                created_by=user_id,
            )
        )

        await self.audit.log(
            AuditEntry(
                organization_id=organization_id,
                user_id=user_id,
                action="created",
                entity_id=integration.id,
                entity_name=name,
                description=f'Created {connector_type} integration "{name}"',
                metadata={"connectorType": connector_type},
            )
        )
        return self._masked(integration)

    async def get_integration(self, integration_id: str, organization_id: Optional[str] = None) -> Integration:
        return self._masked(await self._load(integration_id, organization_id))

    async def update_config(
        self,
        integration_id: str,
        organization_id: Optional[str],
        user_id: Optional[str],
        config: Dict[str, Any],
    ) -> Integration:
        """Merge a config edit into the stored config and re-encrypt it."""
        integration = await self._load(integration_id, organization_id)
        merged = merge_config(self.vault.decrypt_config(integration.config), config)
        if not integration.is_custom:
            self.connectors.validate_config(integration.connector_type, merged)

        encrypted = self.vault.encrypt_config(merged)
        await self.integrations.update(integration.id, {"config": encrypted})

        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="updated",
                entity_id=integration.id,
                entity_name=integration.name,
                description=f'Updated configuration of integration "{integration.name}"',
                metadata={"fields": sorted(config.keys())},
            )
        )
        return self._masked(integration.model_copy(update={"config": encrypted}))

    async def test_connection(
        self,
        integration_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ConnectionTestResult:
        """Check the stored credentials and move the integration to active or error."""
        integration = await self._load(integration_id, organization_id)

        if integration.is_custom:
            result = await self._test_custom(integration, organization_id, user_id)
        else:
            result = await self._test_builtin(integration)

        status = IntegrationStatus.ACTIVE if result.success else IntegrationStatus.ERROR
        await self.integrations.update(integration.id, {"status": status.value})

        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="connection_tested",
                entity_id=integration.id,
                entity_name=integration.name,
                description=f'Connection test for "{integration.name}": {result.message}',
                metadata={"success": result.success},
            )
        )
        return result

    async def _test_builtin(self, integration: Integration) -> ConnectionTestResult:
        try:
            connector = self.connectors.create(
                integration.connector_type,
                self.vault.decrypt_config(integration.config) or {},
                self.http_client,
                timeout=self.timeout,
                retry_attempts=self.retry_attempts,
            )
        except IntegrationError as e:
            return ConnectionTestResult(success=False, message=str(e))
        return await connector.test_connection()

    async def _test_custom(
        self, integration: Integration, organization_id: Optional[str], user_id: Optional[str]
    ) -> ConnectionTestResult:
        config = await self.custom_configs.get(integration.id)
        if config is None:
            return ConnectionTestResult(success=False, message="Custom integration is not configured yet")

        if config.mode == ExecutionMode.CODE:
            validation = self.orchestrator.validate_code(config.custom_code or "")
            if not validation.valid:
                return ConnectionTestResult(
                    success=False,
                    message="Script validation failed",
                    details={"errors": validation.errors},
                )
            return ConnectionTestResult(
                success=True,
                message="Script is valid",
                details={"warnings": validation.warnings},
            )

        result = await self.orchestrator.test_endpoint(
            integration.id, organization_id=organization_id, user_id=user_id, endpoint_index=0
        )
        return ConnectionTestResult(
            success=result.success,
            message=result.message,
            details={"statusCode": result.status_code, "responseTime": result.response_time},
        )

    async def _load(self, integration_id: str, organization_id: Optional[str]) -> Integration:
        integration = await self.integrations.get(integration_id, organization_id)
        if integration is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        return integration

    def _masked(self, integration: Integration) -> Integration:
        masked = self.vault.mask_config(self.vault.decrypt_config(integration.config)) or {}
        return integration.model_copy(update={"config": masked})
