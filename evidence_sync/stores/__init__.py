"""Persistence interfaces and their MongoDB implementations."""

from .base import (
    AuditLogger,
    CustomConfigStore,
    EvidenceStore,
    IntegrationStore,
    Notifier,
    SyncJobStore,
)
from .mongo import (
    MongoAuditLogger,
    MongoCustomConfigStore,
    MongoEvidenceStore,
    MongoIntegrationStore,
    MongoSyncJobStore,
)
from .notifier import LoggingNotifier, WebhookNotifier, build_notifier

__all__ = [
    "AuditLogger",
    "CustomConfigStore",
    "EvidenceStore",
    "IntegrationStore",
    "Notifier",
    "SyncJobStore",
    "MongoAuditLogger",
    "MongoCustomConfigStore",
    "MongoEvidenceStore",
    "MongoIntegrationStore",
    "MongoSyncJobStore",
    "LoggingNotifier",
    "WebhookNotifier",
    "build_notifier",
]
