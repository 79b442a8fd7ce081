"""Persists evidence items as a stored blob plus an evidence row each."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from evidence_sync.models import Evidence, EvidenceItem, Integration, utcnow
from evidence_sync.storage import BlobStorage
from evidence_sync.stores import EvidenceStore

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/json"


def blob_path(connector_type: str, integration_id: str, timestamp: int, suffix: str = "") -> str:
    return f"integrations/{connector_type}/{integration_id}/{timestamp}{suffix}.json"


class EvidenceWriter:
    def __init__(self, storage: BlobStorage, evidence_store: EvidenceStore):
        self.storage = storage
        self.evidence_store = evidence_store

    async def write(
        self,
        integration: Integration,
        items: List[EvidenceItem],
        user_id: Optional[str] = None,
        metrics: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
    ) -> Tuple[List[Evidence], List[str]]:
        """Write every item; a failed item is logged and reported, not raised.

        Returns the created evidence rows and the per-item error messages.
        """
        created: List[Evidence] = []
        errors: List[str] = []
        connector_type = integration.connector_type
        timestamp = int(time.time() * 1000)
        multiple = len(items) > 1

        for index, item in enumerate(items):
            suffix = f"-{index}" if multiple else ""
            path = blob_path(connector_type, integration.id, timestamp, suffix)
            content = json.dumps(item.data, indent=2, default=str).encode("utf-8")
            try:
                await self.storage.upload(content, path, content_type=CONTENT_TYPE)
                evidence = await self.evidence_store.create(
                    Evidence(
                        organization_id=integration.organization_id,
                        title=item.title,
                        description=item.description,
                        type=item.type,
                        source=connector_type,
                        filename=f"{connector_type}-sync-{timestamp}{suffix}.json",
                        mime_type=CONTENT_TYPE,
                        size=len(content),
                        storage_path=path,
                        metadata={
                            "integrationId": integration.id,
                            "integrationType": connector_type,
                            "syncTimestamp": timestamp,
                            "jobId": job_id,
                            **(metrics or {}),
                        },
                        tags=[connector_type, "automated", "integration-sync"],
                        collected_at=utcnow(),
                        created_by=user_id,
                    )
                )
            except Exception as e:
                logger.error(f"Failed to create evidence '{item.title}' for {integration.id}: {e}")
                errors.append(f"Failed to store evidence '{item.title}': {e}")
                continue

            created.append(evidence)

        return created, errors
