"""Application services."""

from . import summaries
from .evidence_writer import EvidenceWriter
from .sync_orchestrator import SyncOrchestrator
from .integration_service import IntegrationService
from .custom_config_service import CustomConfigService

__all__ = [
    "summaries",
    "EvidenceWriter",
    "SyncOrchestrator",
    "IntegrationService",
    "CustomConfigService",
]
