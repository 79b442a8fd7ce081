"""Custom integration config: read, validate and save."""

from typing import Any, Dict, List, Optional
import logging

import pydantic

from evidence_sync.core.errors import ConfigurationError, NotFoundError, ValidationError
from evidence_sync.engines import CODE_TEMPLATE, SandboxedCodeRunner
from evidence_sync.integrations.token_cache import RedisTokenCache
from evidence_sync.models import (
    AuditEntry,
    CustomExecutionConfig,
    EndpointSpec,
    ExecutionMode,
    Integration,
    parse_auth_config,
)
from evidence_sync.schemas import CustomConfigPayload
from evidence_sync.stores import AuditLogger, CustomConfigStore, IntegrationStore
from evidence_sync.utils.crypto import CredentialVault, merge_config

logger = logging.getLogger(__name__)


def _format_errors(prefix: str, error: pydantic.ValidationError) -> List[str]:
    return [
        f"{prefix}{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
        for err in error.errors()
    ]


class CustomConfigService:
    def __init__(
        self,
        integrations: IntegrationStore,
        custom_configs: CustomConfigStore,
        audit: AuditLogger,
        vault: CredentialVault,
        code_runner: SandboxedCodeRunner,
        token_cache: Optional[RedisTokenCache] = None,
    ):
        self.integrations = integrations
        self.custom_configs = custom_configs
        self.audit = audit
        self.vault = vault
        self.code_runner = code_runner
        self.token_cache = token_cache

    async def get_config(self, integration_id: str, organization_id: Optional[str] = None) -> CustomExecutionConfig:
        """Stored config with its auth config masked, or a fresh default."""
        integration = await self._load_custom(integration_id, organization_id)
        config = await self.custom_configs.get(integration.id)
        if config is None:
            return CustomExecutionConfig(
                integration_id=integration.id,
                mode=ExecutionMode.VISUAL,
                custom_code=CODE_TEMPLATE,
            )
        return self._masked(config)

    async def save_config(
        self,
        integration_id: str,
        organization_id: Optional[str],
        user_id: Optional[str],
        payload: CustomConfigPayload,
    ) -> CustomExecutionConfig:
        """Validate, encrypt and store a custom config.

        Raises ValidationError with every problem found; nothing is written
        in that case.
        """
        integration = await self._load_custom(integration_id, organization_id)
        existing = await self.custom_configs.get(integration.id)
        errors: List[str] = []

        if payload.mode == ExecutionMode.CODE:
            if not payload.custom_code or not payload.custom_code.strip():
                errors.append("Custom code is required in code mode")
            else:
                validation = self.code_runner.validate(payload.custom_code)
                errors.extend(validation.errors)
                for warning in validation.warnings:
                    logger.info(f"Script warning for {integration.id}: {warning}")

        endpoints: List[EndpointSpec] = []
        for index, raw in enumerate(payload.endpoints):
            try:
                endpoints.append(EndpointSpec.model_validate(raw))
            except pydantic.ValidationError as e:
                errors.extend(_format_errors(f"endpoints[{index}].", e))

        auth_config: Optional[Dict[str, Any]] = None
        if payload.auth_type:
            stored_auth = self.vault.decrypt_config(existing.auth_config) if existing else None
            auth_config = merge_config(stored_auth, payload.auth_config)
            try:
                parse_auth_config(payload.auth_type, auth_config)
            except pydantic.ValidationError as e:
                errors.extend(_format_errors("authConfig.", e))

        if errors:
            raise ValidationError("Invalid custom integration config", errors)

        config = CustomExecutionConfig(
            id=existing.id if existing else None,
            integration_id=integration.id,
            mode=payload.mode,
            base_url=payload.base_url,
            endpoints=endpoints,
            auth_type=payload.auth_type,
            auth_config=self.vault.encrypt_config(auth_config),
            response_mapping=payload.response_mapping,
            custom_code=payload.custom_code,
            last_test_at=existing.last_test_at if existing else None,
            last_test_status=existing.last_test_status if existing else None,
            last_test_error=existing.last_test_error if existing else None,
        )
        if existing:
            config.created_at = existing.created_at
        saved = await self.custom_configs.upsert(config)
        if self.token_cache is not None:
            await self.token_cache.invalidate(integration.id)

        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="custom_config_updated",
                entity_id=integration.id,
                entity_name=integration.name,
                description=f'Updated custom configuration of "{integration.name}" ({payload.mode.value} mode)',
                metadata={
                    "mode": payload.mode.value,
                    "endpoints": len(endpoints),
                    "authType": payload.auth_type.value if payload.auth_type else None,
                },
            )
        )
        return self._masked(saved)

    def get_code_template(self) -> str:
        return CODE_TEMPLATE

    async def _load_custom(self, integration_id: str, organization_id: Optional[str]) -> Integration:
        integration = await self.integrations.get(integration_id, organization_id)
        if integration is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        if not integration.is_custom:
            raise ConfigurationError(
                f"Integration {integration.name} is a {integration.connector_type} connector, not custom"
            )
        return integration

    def _masked(self, config: CustomExecutionConfig) -> CustomExecutionConfig:
        masked = self.vault.mask_config(self.vault.decrypt_config(config.auth_config))
        return config.model_copy(update={"auth_config": masked})
