"""Sync orchestrator: runs one integration sync end to end.

The orchestrator picks the execution path for an integration (declarative
endpoints, sandboxed script, or a builtin connector), turns what it returns
into evidence, and keeps the SyncJob, the integration's sync bookkeeping and
the audit trail consistent with the outcome.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Type

import httpx

from evidence_sync.core.errors import ConfigurationError, NotFoundError
from evidence_sync.engines import DeclarativeEndpointRunner, ExecutionContext, SandboxedCodeRunner
from evidence_sync.integrations import AuthHeaderBuilder, ConnectorRegistry
from evidence_sync.models import (
    AuditEntry,
    CustomExecutionConfig,
    EndpointTestResult,
    EvidenceItem,
    ExecutionMode,
    Integration,
    IntegrationStatus,
    ScriptValidationResult,
    SyncJob,
    SyncLogLine,
    SyncOutcome,
    SyncStatus,
    utcnow,
)
from evidence_sync.services import summaries
from evidence_sync.services.evidence_writer import EvidenceWriter
from evidence_sync.stores import AuditLogger, CustomConfigStore, IntegrationStore, Notifier, SyncJobStore
from evidence_sync.utils.crypto import CredentialVault, merge_config

logger = logging.getLogger(__name__)


class Collected(NamedTuple):
    items: List[EvidenceItem]
    metrics: Dict[str, Any]
    logs: List[str]
    summary: Optional[str] = None


class SyncOrchestrator:
    """Coordinates engines, connectors, stores and the vault for a sync."""

    def __init__(
        self,
        integrations: IntegrationStore,
        custom_configs: CustomConfigStore,
        jobs: SyncJobStore,
        evidence_writer: EvidenceWriter,
        audit: AuditLogger,
        notifier: Notifier,
        vault: CredentialVault,
        header_builder: AuthHeaderBuilder,
        declarative_runner: DeclarativeEndpointRunner,
        code_runner: SandboxedCodeRunner,
        http_client: httpx.AsyncClient,
        connectors: Type[ConnectorRegistry] = ConnectorRegistry,
        timeout: float = 30.0,
        retry_attempts: int = 2,
    ):
        self.integrations = integrations
        self.custom_configs = custom_configs
        self.jobs = jobs
        self.evidence_writer = evidence_writer
        self.audit = audit
        self.notifier = notifier
        self.vault = vault
        self.header_builder = header_builder
        self.declarative_runner = declarative_runner
        self.code_runner = code_runner
        self.http_client = http_client
        self.connectors = connectors
        self.timeout = timeout
        self.retry_attempts = retry_attempts

    async def execute_sync(
        self,
        integration_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
        triggered_by: str = "manual",
    ) -> SyncOutcome:
        """Run a sync and persist its evidence.

        Raises ConfigurationError before anything is written when the
        integration is missing, inactive, unconfigured or of an unknown type.
        Every failure after the SyncJob exists is returned as an unsuccessful
        outcome instead.
        """
        integration = await self._load(integration_id, organization_id)
        if integration.status == IntegrationStatus.INACTIVE:
            raise ConfigurationError(f"Integration {integration.name} is inactive")

        custom_config: Optional[CustomExecutionConfig] = None
        if integration.is_custom:
            custom_config = await self.custom_configs.get(integration.id)
            if custom_config is None:
                raise ConfigurationError(
                    f"Custom integration {integration.name} has no execution config"
                )
        elif self.connectors.get(integration.connector_type) is None:
            raise ConfigurationError(f"Unknown connector type: {integration.connector_type}")

        job = await self.jobs.create(
            SyncJob(
                integration_id=integration.id,
                organization_id=integration.organization_id,
                triggered_by=triggered_by,
            )
        )
        job.logs.append(SyncLogLine(message="Sync started"))
        logger.info(f"Starting sync for {integration.connector_type} integration {integration.id}")

        evidence_created = 0
        try:
            collected = await self._collect(integration, custom_config)
            job.logs.extend(SyncLogLine(message=line) for line in collected.logs)

            created, write_errors = await self.evidence_writer.write(
                integration,
                collected.items,
                user_id=user_id,
                metrics=collected.metrics,
                job_id=job.id,
            )
            evidence_created = len(created)
        except Exception as e:
            logger.exception(f"Sync failed for integration {integration.id}")
            error = str(e) or type(e).__name__
            await self._record_failure(integration, job, error, user_id)
            return SyncOutcome(
                success=False,
                job_id=job.id,
                message=f"Sync failed: {error}",
                evidence_created=evidence_created,
                errors=[error],
            )

        items_processed = len(collected.items)
        job.logs.extend(SyncLogLine(message=f"Warning: {e}") for e in write_errors)
        job.logs.append(SyncLogLine(message=f"Created {evidence_created} evidence records"))
        job.logs.append(SyncLogLine(message="Sync completed successfully"))
        job.status = SyncStatus.COMPLETED
        job.items_processed = items_processed
        job.evidence_created = evidence_created
        job.completed_at = utcnow()
        await self.jobs.finish(job)

        now = utcnow()
        update: Dict[str, Any] = {
            "last_sync_at": now,
            "last_sync_status": SyncStatus.COMPLETED.value,
            "last_sync_error": None,
            "status": IntegrationStatus.ACTIVE.value,
            "total_evidence_collected": integration.total_evidence_collected + evidence_created,
        }
        if evidence_created:
            update["last_evidence_at"] = now
        await self.integrations.update(integration.id, update)

        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="synced",
                entity_id=integration.id,
                entity_name=integration.name,
                description=(
                    f'Synced integration "{integration.name}" - {items_processed} items processed, '
                    f"{evidence_created} evidence records created"
                ),
                metadata={
                    "jobId": job.id,
                    "itemsProcessed": items_processed,
                    "evidenceCreated": evidence_created,
                },
            )
        )

        logger.info(f"Sync {job.id} completed: {evidence_created} evidence records")
        return SyncOutcome(
            success=True,
            job_id=job.id,
            message=(
                f"Sync completed: {items_processed} items processed, "
                f"{evidence_created} evidence records created"
            ),
            evidence_created=evidence_created,
            items_processed=items_processed,
            errors=write_errors or None,
            data={"summary": collected.summary, "logs": collected.logs},
        )

    async def test_endpoint(
        self,
        integration_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
        endpoint_index: int = 0,
        base_url: Optional[str] = None,
        auth_config: Optional[Dict[str, Any]] = None,
    ) -> EndpointTestResult:
        """Try a custom integration without creating evidence or a SyncJob.

        ``base_url`` and ``auth_config`` may carry unsaved edits; masked values
        in ``auth_config`` fall back to the stored secrets.
        """
        integration = await self._load(integration_id, organization_id)
        config = await self.custom_configs.get(integration.id)
        if config is None:
            raise ConfigurationError(f"Custom integration {integration.name} has no execution config")

        auth = merge_config(self.vault.decrypt_config(config.auth_config), auth_config)
        config = config.model_copy(update={"auth_config": auth})
        if base_url:
            config = config.model_copy(update={"base_url": base_url})

        # unsaved credentials must neither read nor seed the token cache
        use_cache = not auth_config
        if config.mode == ExecutionMode.CODE:
            context = await self._execution_context(integration, config, use_cache=use_cache)
            result = await self.code_runner.test(config.custom_code or "", context)
        else:
            result = await self.declarative_runner.test_endpoint(
                config,
                endpoint_index=endpoint_index,
                integration_id=integration.id,
                use_cache=use_cache,
            )

        await self.custom_configs.update(
            integration.id,
            {
                "last_test_at": utcnow(),
                "last_test_status": "success" if result.success else "failed",
                "last_test_error": None if result.success else (result.error or result.message),
            },
        )
        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="tested",
                entity_id=integration.id,
                entity_name=integration.name,
                description=f'Tested custom integration "{integration.name}": {result.message}',
                metadata={"success": result.success, "mode": config.mode.value},
            )
        )
        return result

    def validate_code(self, code: str) -> ScriptValidationResult:
        return self.code_runner.validate(code)

    async def _load(self, integration_id: str, organization_id: Optional[str]) -> Integration:
        integration = await self.integrations.get(integration_id, organization_id)
        if integration is None:
            raise NotFoundError(f"Integration {integration_id} not found")
        return integration

    async def _collect(
        self, integration: Integration, custom_config: Optional[CustomExecutionConfig]
    ) -> Collected:
        if custom_config is not None:
            return await self._collect_custom(integration, custom_config)
        return await self._collect_builtin(integration)

    async def _collect_custom(self, integration: Integration, config: CustomExecutionConfig) -> Collected:
        config = config.model_copy(update={"auth_config": self.vault.decrypt_config(config.auth_config)})

        if config.mode == ExecutionMode.CODE:
            context = await self._execution_context(integration, config)
            result = await self.code_runner.run(config.custom_code or "", context)
        else:
            result = await self.declarative_runner.run(config, integration_id=integration.id)

        return Collected(
            items=result.evidence,
            metrics={"executionMode": config.mode.value},
            logs=result.logs,
        )

    async def _collect_builtin(self, integration: Integration) -> Collected:
        connector_type = integration.connector_type
        connector = self.connectors.create(
            connector_type,
            self.vault.decrypt_config(integration.config) or {},
            self.http_client,
            timeout=self.timeout,
            retry_attempts=self.retry_attempts,
        )
        raw = await connector.sync()

        summary = summaries.summarize(connector_type, raw)
        collected_on = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        item = EvidenceItem(
            title=f"{summaries.display_name(connector_type)} Evidence - {collected_on}",
            description=summaries.describe(connector_type),
            data={
                "collectedAt": raw.get("collectedAt") or utcnow().isoformat(),
                "integrationType": connector_type,
                "summary": summary,
                "data": raw,
            },
        )

        logs = [summary]
        logs.extend(f"Warning: {error}" for error in raw.get("errors") or [])
        return Collected(
            items=[item],
            metrics=summaries.extract_metrics(connector_type, raw),
            logs=logs,
            summary=summary,
        )

    async def _execution_context(
        self, integration: Integration, config: CustomExecutionConfig, use_cache: bool = True
    ) -> ExecutionContext:
        """Build a script context from an already-decrypted config."""
        return ExecutionContext(
            base_url=config.base_url,
            auth_headers=await self.header_builder.build_headers(
                config.auth_type, config.auth_config, integration.id, use_cache=use_cache
            ),
            auth_params=self.header_builder.build_query_params(config.auth_type, config.auth_config),
            organization_id=integration.organization_id,
            integration_id=integration.id,
        )

    async def _record_failure(
        self, integration: Integration, job: SyncJob, error: str, user_id: Optional[str]
    ) -> None:
        job.status = SyncStatus.FAILED
        job.error = error
        job.completed_at = utcnow()
        job.logs.append(SyncLogLine(message=f"Error: {error}"))
        await self.jobs.finish(job)

        await self.integrations.update(
            integration.id,
            {
                "last_sync_at": job.completed_at,
                "last_sync_status": SyncStatus.FAILED.value,
                "last_sync_error": error,
            },
        )
        await self.audit.log(
            AuditEntry(
                organization_id=integration.organization_id,
                user_id=user_id,
                action="sync_failed",
                entity_id=integration.id,
                entity_name=integration.name,
                description=f'Sync failed for integration "{integration.name}" - {error}',
                metadata={"jobId": job.id, "success": False, "error": error},
            )
        )
        await self.notifier.notify_sync_failed(integration, job, error)
