"""Sync job and run outcome models."""

from datetime import datetime
from typing import Optional, Any, List
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .integration import utcnow


class SyncStatus(str, Enum):
    """Sync job status."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncLogLine(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    message: str


class SyncJob(BaseModel):
    """Durable record of one triggered sync."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    integration_id: str
    organization_id: str
    status: SyncStatus = SyncStatus.RUNNING
    triggered_by: str = "manual"

    items_processed: int = 0
    evidence_created: int = 0
    logs: List[SyncLogLine] = Field(default_factory=list)
    error: Optional[str] = None

    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != SyncStatus.RUNNING


class SyncOutcome(BaseModel):
    """Result returned to whoever triggered a sync."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    job_id: Optional[str] = Field(default=None, alias="jobId")
    message: str
    evidence_created: int = Field(default=0, alias="evidenceCreated")
    items_processed: int = Field(default=0, alias="itemsProcessed")
    errors: Optional[List[str]] = None
    data: Optional[Any] = None


class EndpointTestResult(BaseModel):
    """Outcome of a side-effect-free endpoint or script test."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    response_time: Optional[int] = Field(default=None, alias="responseTime")
    data: Optional[Any] = None
    error: Optional[str] = None


class ScriptValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
