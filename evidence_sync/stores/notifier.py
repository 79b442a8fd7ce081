"""Sync failure notifiers."""

import logging
from typing import Optional

import httpx

from evidence_sync.models import Integration, SyncJob
from evidence_sync.stores.base import Notifier

logger = logging.getLogger(__name__)


class LoggingNotifier(Notifier):
    """Records failures in the service log only."""

    async def notify_sync_failed(self, integration: Integration, job: SyncJob, error: str) -> None:
        logger.warning(
            f"Sync failed for integration {integration.id} ({integration.name})",
            extra={"integration_id": integration.id, "job_id": job.id, "error": error},
        )


class WebhookNotifier(Notifier):
    """Posts a JSON failure event to a configured webhook URL.

    Delivery problems are logged and never surface to the sync caller.
    """

    def __init__(self, http_client: httpx.AsyncClient, url: str, timeout: float = 10.0):
        self.http_client = http_client
        self.url = url
        self.timeout = timeout

    async def notify_sync_failed(self, integration: Integration, job: SyncJob, error: str) -> None:
        payload = {
            "event": "integration.sync_failed",
            "organizationId": integration.organization_id,
            "integrationId": integration.id,
            "integrationName": integration.name,
            "connectorType": integration.connector_type,
            "jobId": job.id,
            "error": error,
            "failedAt": (job.completed_at or job.started_at).isoformat(),
        }
        try:
            response = await self.http_client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver sync failure notification for {integration.id}: {e}")


def build_notifier(http_client: httpx.AsyncClient, webhook_url: Optional[str]) -> Notifier:
    if webhook_url:
        return WebhookNotifier(http_client, webhook_url)
    return LoggingNotifier()
