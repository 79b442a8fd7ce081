"""Evidence, sync result and audit models."""

from datetime import datetime
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field

from .integration import utcnow


class EvidenceItem(BaseModel):
    """One unit of evidence produced by an engine or connector."""
    title: str
    description: str = ""
    data: Any = None
    type: str = "automated"


class SyncResult(BaseModel):
    """Transient output shared by every engine; never persisted directly."""
    evidence: List[EvidenceItem] = Field(default_factory=list)
    logs: List[str] = Field(default_factory=list)
    raw: Optional[Dict[str, Any]] = None


class Evidence(BaseModel):
    """Durable evidence record pointing at a stored blob."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    organization_id: str
    title: str
    description: str = ""
    type: str = "automated"
    source: str
    status: str = "approved"

    filename: str
    mime_type: str = "application/json"
    size: int
    storage_path: str

    metadata: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)

    collected_at: datetime = Field(default_factory=utcnow)
    valid_from: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    """Audit log entry appended by services."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None, alias="_id")
    organization_id: str
    user_id: Optional[str] = None
    action: str
    entity_type: str = "integration"
    entity_id: str
    entity_name: Optional[str] = None
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
