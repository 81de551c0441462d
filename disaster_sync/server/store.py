"""
MODULE OVERVIEW:
The backing store for disasters, reports and resources.

WHAT IS HAPPENING HERE:
A managed Postgres would normally sit here. The real-time layer only needs
"mutation committed, now publish", so an in-memory store with the same
read/write surface is enough: routes call a store method, and only once it
returns do they publish the matching event.

Ownership rules live here too: only the owner of a disaster or an admin may
update or delete it.
"""

from typing import Dict, List
from collections import Counter

from disaster_sync.shared.errors import InvalidRequestError, NotFoundError, PermissionDeniedError
from disaster_sync.shared.models import (
    Analytics,
    AuditEntry,
    Disaster,
    DisasterCreate,
    DisasterUpdate,
    ImageVerification,
    Report,
    ReportCreate,
    Resource,
    ResourceCreate,
    utcnow,
)
from disaster_sync.server.deps import User


class DisasterStore:
    def __init__(self):
        self.disasters: Dict[str, Disaster] = {}
        self.reports: Dict[str, List[Report]] = {}
        self.resources: Dict[str, List[Resource]] = {}

    # ==========================
    # DISASTERS
    # ==========================
    def create_disaster(self, body: DisasterCreate, user: User, location_name: str | None = None) -> Disaster:
        disaster = Disaster(
            title=body.title,
            description=body.description,
            location_name=body.location_name or location_name,
            disaster_type=body.disaster_type,
            tags=body.tags,
            owner_id=user.id,
            audit_trail=[AuditEntry(action="create", user_id=user.id)],
        )
        self.disasters[disaster.id] = disaster
        self.reports[disaster.id] = []
        self.resources[disaster.id] = []
        return disaster

    def get_disaster(self, disaster_id: str) -> Disaster:
        disaster = self.disasters.get(disaster_id)
        if disaster is None:
            raise NotFoundError(f"Disaster {disaster_id} not found")
        return disaster

    def list_disasters(
        self,
        tag: str | None = None,
        status: str | None = None,
        disaster_type: str | None = None,
        limit: int = 50,
    ) -> List[Disaster]:
        # Insertion order is creation order; updates keep their slot.
        results = [
            d for d in reversed(self.disasters.values())
            if (tag is None or tag in d.tags)
            and (status is None or d.status == status)
            and (disaster_type is None or d.disaster_type == disaster_type)
        ]
        return results[:limit]

    def _check_owner(self, disaster: Disaster, user: User) -> None:
        if disaster.owner_id != user.id and not user.is_admin:
            raise PermissionDeniedError("Insufficient permissions")

    def _apply_update(self, disaster: Disaster, updates: DisasterUpdate, user: User, action: str) -> Disaster:
        changes = updates.model_dump(exclude_unset=True, exclude_none=True)
        updated = disaster.model_copy(update={
            **changes,
            "updated_at": utcnow(),
            "audit_trail": [*disaster.audit_trail, AuditEntry(action=action, user_id=user.id, changes=sorted(changes))],
        })
        self.disasters[disaster.id] = updated
        return updated

    def update_disaster(self, disaster_id: str, updates: DisasterUpdate, user: User) -> Disaster:
        disaster = self.get_disaster(disaster_id)
        self._check_owner(disaster, user)
        return self._apply_update(disaster, updates, user, "update")

    def bulk_update(self, disaster_ids: List[str], updates: DisasterUpdate, user: User) -> List[Disaster]:
        if not user.is_admin:
            raise PermissionDeniedError("Admin access required")
        if not disaster_ids:
            raise InvalidRequestError("disaster_ids array is required")
        return [
            self._apply_update(self.disasters[did], updates, user, "bulk_update")
            for did in disaster_ids
            if did in self.disasters
        ]

    def delete_disaster(self, disaster_id: str, user: User) -> None:
        disaster = self.get_disaster(disaster_id)
        self._check_owner(disaster, user)
        del self.disasters[disaster_id]
        self.reports.pop(disaster_id, None)
        self.resources.pop(disaster_id, None)

    # ==========================
    # REPORTS & RESOURCES
    # ==========================
    def create_report(
        self,
        body: ReportCreate,
        user: User,
        severity: str,
        verification: ImageVerification | None = None,
    ) -> Report:
        self.get_disaster(body.disaster_id)
        report = Report(
            disaster_id=body.disaster_id,
            user_id=user.id,
            content=body.content,
            image_url=body.image_url,
            location=body.location,
            resource_needs=body.resource_needs,
            severity=severity,
        )
        if verification is not None:
            _apply_verification(report, verification, verified_by="system")
        self.reports[body.disaster_id].insert(0, report)
        return report

    def list_reports(
        self,
        disaster_id: str,
        severity: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> List[Report]:
        self.get_disaster(disaster_id)
        results = [
            r for r in self.reports[disaster_id]
            if (severity is None or r.severity == severity)
            and (status is None or r.verification_status == status)
        ]
        return results[:limit]

    def verify_report_images(self, disaster_id: str, image_url: str, result: ImageVerification, user: User) -> int:
        """Stamp a verdict on every report of the disaster that carries this image."""
        self.get_disaster(disaster_id)
        matched = [r for r in self.reports[disaster_id] if r.image_url == image_url]
        for report in matched:
            _apply_verification(report, result, verified_by=user.id)
        return len(matched)

    def create_resource(self, disaster_id: str, body: ResourceCreate, user: User) -> Resource:
        self.get_disaster(disaster_id)
        resource = Resource(
            disaster_id=disaster_id,
            name=body.name,
            resource_type=body.type,
            quantity=body.quantity,
            location=body.location,
            contact_info=body.contact_info,
            availability_status=body.availability_status,
            created_by=user.id,
        )
        self.resources[disaster_id].insert(0, resource)
        return resource

    def list_resources(self, disaster_id: str, resource_type: str | None = None) -> List[Resource]:
        self.get_disaster(disaster_id)
        return [
            r for r in self.resources[disaster_id]
            if resource_type is None or r.resource_type == resource_type
        ]

    def analytics(self, disaster_id: str) -> Analytics:
        disaster = self.get_disaster(disaster_id)
        reports = self.reports[disaster_id]
        resources = self.resources[disaster_id]

        severities = Counter(r.severity for r in reports)
        verification = Counter(r.verification_status for r in reports)
        return Analytics(
            disaster_id=disaster_id,
            total_reports=len(reports),
            severity_distribution={s: severities.get(s, 0) for s in ("low", "medium", "high", "critical")},
            verification_status={
                "verified": verification.get("authentic", 0),
                "pending": verification.get("pending", 0),
                "suspicious": verification.get("suspicious", 0),
                "fake": verification.get("fake", 0),
            },
            total_resources=len(resources),
            resource_types=dict(Counter(r.resource_type for r in resources)),
            available_resources=sum(1 for r in resources if r.availability_status == "available"),
            disaster_status=disaster.status,
            created_at=disaster.created_at,
            last_updated=disaster.updated_at,
        )


def _apply_verification(report: Report, result: ImageVerification, verified_by: str) -> None:
    report.verification_status = result.analysis
    report.verification_details = result
    report.verified_at = utcnow()
    report.verified_by = verified_by
