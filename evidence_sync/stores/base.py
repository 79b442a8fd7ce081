"""Persistence interfaces used by the services and the sync orchestrator."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from evidence_sync.models import (
    AuditEntry,
    CustomExecutionConfig,
    Evidence,
    Integration,
    SyncJob,
)


class IntegrationStore(ABC):
    @abstractmethod
    async def get(self, integration_id: str, organization_id: Optional[str] = None) -> Optional[Integration]:
        """Load an integration, scoped to an organization when one is given."""

    @abstractmethod
    async def create(self, integration: Integration) -> Integration:
        pass

    @abstractmethod
    async def update(self, integration_id: str, fields: Dict[str, Any]) -> None:
        pass


class CustomConfigStore(ABC):
    @abstractmethod
    async def get(self, integration_id: str) -> Optional[CustomExecutionConfig]:
        pass

    @abstractmethod
    async def upsert(self, config: CustomExecutionConfig) -> CustomExecutionConfig:
        """Insert or replace the config owned by ``config.integration_id``."""

    @abstractmethod
    async def update(self, integration_id: str, fields: Dict[str, Any]) -> None:
        pass


class SyncJobStore(ABC):
    @abstractmethod
    async def create(self, job: SyncJob) -> SyncJob:
        pass

    @abstractmethod
    async def finish(self, job: SyncJob) -> None:
        """Persist a job's terminal state."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[SyncJob]:
        pass


class EvidenceStore(ABC):
    @abstractmethod
    async def create(self, evidence: Evidence) -> Evidence:
        pass


class AuditLogger(ABC):
    @abstractmethod
    async def log(self, entry: AuditEntry) -> None:
        pass


class Notifier(ABC):
    @abstractmethod
    async def notify_sync_failed(self, integration: Integration, job: SyncJob, error: str) -> None:
        pass
