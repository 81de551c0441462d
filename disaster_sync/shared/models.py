"""
MODULE OVERVIEW:
The strictly typed data structures shared by the server and the dashboard client,
powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Records (`Disaster`, `Report`, `Resource`) are what the REST routes return and what
event payloads carry. Request bodies are separate models so that server-owned fields
(ids, owner, audit trail, timestamps) can never be set by a caller.
Records allow extra fields: the client must not choke if a newer server adds a column.
"""
from typing import Any, Literal
from uuid import uuid4
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high", "critical"]
DisasterStatus = Literal["active", "monitoring", "resolved", "pending"]
VerificationStatus = Literal["pending", "authentic", "suspicious", "fake"]


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEntry(BaseModel):
    action: Literal["create", "update", "bulk_update"]
    user_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    changes: list[str] = Field(default_factory=list)


class Disaster(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    location_name: str | None = None
    disaster_type: str = "other"
    tags: list[str] = Field(default_factory=list)
    status: DisasterStatus = "active"
    owner_id: str = "system"
    audit_trail: list[AuditEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ImageVerification(BaseModel):
    analysis: VerificationStatus
    confidence: int
    reasoning: str
    image_url: str
    timestamp: datetime = Field(default_factory=utcnow)


class Report(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    disaster_id: str
    user_id: str
    content: str
    image_url: str | None = None
    location: str | None = None
    resource_needs: list[str] = Field(default_factory=list)
    severity: Severity = "medium"
    verification_status: VerificationStatus = "pending"
    verification_details: ImageVerification | None = None
    verified_at: datetime | None = None
    verified_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Resource(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(default_factory=new_id)
    disaster_id: str
    name: str
    resource_type: str = "other"
    quantity: str | None = None
    location: str | None = None
    contact_info: str | None = None
    availability_status: Literal["available", "limited", "unavailable"] = "available"
    created_by: str = "system"
    created_at: datetime = Field(default_factory=utcnow)


class SocialPost(BaseModel):
    post: str
    user: str
    timestamp: datetime
    platform: str = "mock"


class OfficialUpdate(BaseModel):
    source: str
    title: str
    url: str
    published_at: datetime
    summary: str = ""


class Analytics(BaseModel):
    disaster_id: str
    total_reports: int
    severity_distribution: dict[str, int]
    verification_status: dict[str, int]
    total_resources: int
    resource_types: dict[str, int]
    available_resources: int
    disaster_status: str
    created_at: datetime
    last_updated: datetime


# ==========================
# REQUEST BODIES
# ==========================
class DisasterCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    location_name: str | None = None
    disaster_type: str = "other"
    tags: list[str] = Field(default_factory=list)


class DisasterUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    location_name: str | None = None
    disaster_type: str | None = None
    tags: list[str] | None = None
    status: DisasterStatus | None = None


class BulkUpdate(BaseModel):
    disaster_ids: list[str]
    updates: DisasterUpdate


class ReportCreate(BaseModel):
    disaster_id: str
    content: str = Field(min_length=1)
    image_url: str | None = None
    location: str | None = None
    resource_needs: list[str] = Field(default_factory=list)
    severity: Severity | None = None


class ResourceCreate(BaseModel):
    name: str = Field(min_length=1)
    type: str = "other"
    quantity: str | None = None
    location: str | None = None
    contact_info: str | None = None
    availability_status: Literal["available", "limited", "unavailable"] = "available"


class AnalyzeRequest(BaseModel):
    text: str


class VerifyImageRequest(BaseModel):
    image_url: str | None = None
    disaster_type: str | None = None


class AnalyzeResponse(BaseModel):
    location_name: str | None
    severity: Severity
    keywords: list[str]


class ConnectionStats(BaseModel):
    active_connections: int
    subscriptions: int
    events_published: int
    frames_dropped: int
    uptime_s: float
    server_time: datetime


def dump(record: BaseModel) -> dict[str, Any]:
    """JSON-safe dict of a record, the shape used inside event payloads."""
    return record.model_dump(mode="json")
