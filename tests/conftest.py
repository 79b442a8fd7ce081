"""Shared fixtures: in-memory stores and a mock HTTP transport."""

from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from evidence_sync.engines import DeclarativeEndpointRunner, SandboxedCodeRunner
from evidence_sync.integrations import AuthHeaderBuilder, RedisTokenCache
from evidence_sync.models import (
    AuditEntry,
    CustomExecutionConfig,
    Evidence,
    Integration,
    SyncJob,
)
from evidence_sync.services import EvidenceWriter, SyncOrchestrator
from evidence_sync.storage import BlobStorage, StorageError
from evidence_sync.stores import (
    AuditLogger,
    CustomConfigStore,
    EvidenceStore,
    IntegrationStore,
    Notifier,
    SyncJobStore,
)
from evidence_sync.utils.crypto import CredentialVault

MASTER_SECRET = "test-master-secret-that-is-long-enough-123"


class InMemoryIntegrationStore(IntegrationStore):
    def __init__(self):
        self.items: Dict[str, Integration] = {}

    async def get(self, integration_id, organization_id=None):
        integration = self.items.get(integration_id)
        if integration is None:
            return None
        if organization_id and integration.organization_id != organization_id:
            return None
        return integration.model_copy(deep=True)

    async def create(self, integration):
        integration.id = integration.id or f"int-{len(self.items) + 1}"
        self.items[integration.id] = integration.model_copy(deep=True)
        return integration

    async def update(self, integration_id, fields):
        self.items[integration_id] = self.items[integration_id].model_copy(update=fields)


class InMemoryCustomConfigStore(CustomConfigStore):
    def __init__(self):
        self.items: Dict[str, CustomExecutionConfig] = {}

    async def get(self, integration_id):
        config = self.items.get(integration_id)
        return config.model_copy(deep=True) if config else None

    async def upsert(self, config):
        config.id = config.id or f"cfg-{config.integration_id}"
        self.items[config.integration_id] = config.model_copy(deep=True)
        return config

    async def update(self, integration_id, fields):
        self.items[integration_id] = self.items[integration_id].model_copy(update=fields)


class InMemorySyncJobStore(SyncJobStore):
    def __init__(self):
        self.items: Dict[str, SyncJob] = {}
        self.finished: List[str] = []

    async def create(self, job):
        job.id = f"job-{len(self.items) + 1}"
        self.items[job.id] = job.model_copy(deep=True)
        return job

    async def finish(self, job):
        self.finished.append(job.id)
        self.items[job.id] = job.model_copy(deep=True)

    async def get(self, job_id):
        return self.items.get(job_id)


class InMemoryEvidenceStore(EvidenceStore):
    def __init__(self):
        self.rows: List[Evidence] = []

    async def create(self, evidence):
        evidence.id = f"ev-{len(self.rows) + 1}"
        self.rows.append(evidence)
        return evidence


class InMemoryAuditLogger(AuditLogger):
    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def log(self, entry):
        self.entries.append(entry)

    def actions(self) -> List[str]:
        return [entry.action for entry in self.entries]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.failures: List[Dict[str, Any]] = []

    async def notify_sync_failed(self, integration, job, error):
        self.failures.append({"integration_id": integration.id, "job_id": job.id, "error": error})


class InMemoryBlobStorage(BlobStorage):
    def __init__(self, fail_paths: Optional[set] = None):
        self.blobs: Dict[str, bytes] = {}
        self.fail_paths = fail_paths or set()

    async def upload(self, content, path, content_type="application/json"):
        if any(path.endswith(suffix) for suffix in self.fail_paths):
            raise StorageError(f"disk full writing {path}")
        self.blobs[path] = content
        return path


class FakeRedis:
    """Dict-backed stand-in for the redis.asyncio calls the token cache makes."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)
            self.ttls.pop(key, None)

    async def scan_iter(self, match):
        prefix = match.rstrip("*")
        for key in list(self.values):
            if key.startswith(prefix):
                yield key


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def vault():
    return CredentialVault(MASTER_SECRET, salt="test-salt")


@pytest.fixture
def token_cache():
    return RedisTokenCache(client=FakeRedis())


@pytest.fixture
def integration_store():
    return InMemoryIntegrationStore()


@pytest.fixture
def custom_config_store():
    return InMemoryCustomConfigStore()


@pytest.fixture
def job_store():
    return InMemorySyncJobStore()


@pytest.fixture
def evidence_store():
    return InMemoryEvidenceStore()


@pytest.fixture
def audit():
    return InMemoryAuditLogger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def blob_storage():
    return InMemoryBlobStorage()


@pytest.fixture
def build_orchestrator(
    vault, integration_store, custom_config_store, job_store, evidence_store, audit, notifier, blob_storage
):
    """Factory for an orchestrator whose outbound HTTP goes to ``handler``."""

    def build(
        handler: Callable[[httpx.Request], httpx.Response], code_runner=None, token_cache=None
    ) -> SyncOrchestrator:
        client = mock_client(handler)
        header_builder = AuthHeaderBuilder(client, token_cache=token_cache, retry_attempts=1)
        return SyncOrchestrator(
            integrations=integration_store,
            custom_configs=custom_config_store,
            jobs=job_store,
            evidence_writer=EvidenceWriter(blob_storage, evidence_store),
            audit=audit,
            notifier=notifier,
            vault=vault,
            header_builder=header_builder,
            declarative_runner=DeclarativeEndpointRunner(client, header_builder, retry_attempts=1),
            code_runner=code_runner or SandboxedCodeRunner(client, timeout=10.0),
            http_client=client,
            retry_attempts=1,
        )

    return build
