"""MongoDB (Motor) implementations of the persistence interfaces."""

from typing import Any, Dict, Optional
import logging

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

from evidence_sync.core.database import COLLECTIONS, Database
from evidence_sync.models import (
    AuditEntry,
    CustomExecutionConfig,
    Evidence,
    Integration,
    SyncJob,
    utcnow,
)
from evidence_sync.stores.base import (
    AuditLogger,
    CustomConfigStore,
    EvidenceStore,
    IntegrationStore,
    SyncJobStore,
)

logger = logging.getLogger(__name__)


def _object_id(value: Optional[str]) -> Optional[ObjectId]:
    # ObjectId(None) generates a fresh id
    if not value:
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def _to_document(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, exclude={"id"})


def _from_document(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc["_id"])
    return doc


class MongoIntegrationStore(IntegrationStore):
    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["integrations"])

    async def get(self, integration_id: str, organization_id: Optional[str] = None) -> Optional[Integration]:
        oid = _object_id(integration_id)
        if oid is None:
            return None

        query: Dict[str, Any] = {"_id": oid}
        if organization_id:
            query["organization_id"] = organization_id

        doc = await self.collection.find_one(query)
        return Integration(**_from_document(doc)) if doc else None

    async def create(self, integration: Integration) -> Integration:
        result = await self.collection.insert_one(_to_document(integration))
        integration.id = str(result.inserted_id)
        logger.info(f"Created integration {integration.id} of type {integration.connector_type}")
        return integration

    async def update(self, integration_id: str, fields: Dict[str, Any]) -> None:
        oid = _object_id(integration_id)
        if oid is None:
            return
        fields = {**fields, "updated_at": utcnow()}
        await self.collection.update_one({"_id": oid}, {"$set": fields})


class MongoCustomConfigStore(CustomConfigStore):
    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["custom_configs"])

    async def get(self, integration_id: str) -> Optional[CustomExecutionConfig]:
        doc = await self.collection.find_one({"integration_id": integration_id})
        return CustomExecutionConfig(**_from_document(doc)) if doc else None

    async def upsert(self, config: CustomExecutionConfig) -> CustomExecutionConfig:
        document = _to_document(config)
        document["updated_at"] = utcnow()
        created_at = document.pop("created_at")

        result = await self.collection.update_one(
            {"integration_id": config.integration_id},
            {"$set": document, "$setOnInsert": {"created_at": created_at}},
            upsert=True,
        )
        if result.upserted_id is not None:
            config.id = str(result.upserted_id)
        return config

    async def update(self, integration_id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": utcnow()}
        await self.collection.update_one({"integration_id": integration_id}, {"$set": fields})


class MongoSyncJobStore(SyncJobStore):
    def __init__(self, db: Database):
        self.db = db

    @property
    def collection(self):
        return self.db.get_collection(COLLECTIONS["sync_jobs"])

    async def create(self, job: SyncJob) -> SyncJob:
        result = await self.collection.insert_one(_to_document(job))
        job.id = str(result.inserted_id)
        logger.info(f"Created sync job {job.id} for integration {job.integration_id}")
        return job

    async def finish(self, job: SyncJob) -> None:
        oid = _object_id(job.id)
        if oid is None:
            raise ValueError(f"Sync job {job.id!r} has not been persisted")
        document = _to_document(job)
        await self.collection.update_one({"_id": oid}, {"$set": document})

    async def get(self, job_id: str) -> Optional[SyncJob]:
        oid = _object_id(job_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        return SyncJob(**_from_document(doc)) if doc else None


class MongoEvidenceStore(EvidenceStore):
    def __init__(self, db: Database):
        self.db = db

    async def create(self, evidence: Evidence) -> Evidence:
        collection = self.db.get_collection(COLLECTIONS["evidence"])
        result = await collection.insert_one(_to_document(evidence))
        evidence.id = str(result.inserted_id)
        return evidence


class MongoAuditLogger(AuditLogger):
    def __init__(self, db: Database):
        self.db = db

    async def log(self, entry: AuditEntry) -> None:
        collection = self.db.get_collection(COLLECTIONS["audit_logs"])
        await collection.insert_one(_to_document(entry))
        logger.debug(f"Audit {entry.action} on {entry.entity_type} {entry.entity_id}")
