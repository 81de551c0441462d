"""
MODULE OVERVIEW:
Citizen reports and relief resources attached to a disaster.
Both publish scoped events: only dashboards that joined the disaster hear about them.
"""
from fastapi import APIRouter, Depends, Query
from loguru import logger

from disaster_sync.shared import events
from disaster_sync.shared.errors import InvalidRequestError
from disaster_sync.shared.models import Report, ReportCreate, Resource, ResourceCreate, VerifyImageRequest, dump
from disaster_sync.server import analysis
from disaster_sync.server.deps import User, get_bus, get_current_user, get_store

router = APIRouter()


@router.post("/reports", response_model=Report, status_code=201)
async def create_report(
    body: ReportCreate,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
):
    severity = body.severity or analysis.classify_severity(body.content)
    verification = analysis.verify_image(body.image_url) if body.image_url else None
    report = store.create_report(body, user, severity=severity, verification=verification)
    logger.info(f"Report created for disaster {body.disaster_id} by {user.id}")
    bus.publish(events.report_created(body.disaster_id, dump(report)))
    return report


@router.get("/disasters/{disaster_id}/reports", response_model=list[Report])
async def list_reports(
    disaster_id: str,
    severity: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    store=Depends(get_store),
):
    return store.list_reports(disaster_id, severity=severity, status=status, limit=limit)


@router.post("/disasters/{disaster_id}/verify-image")
async def verify_image(
    disaster_id: str,
    body: VerifyImageRequest,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
):
    if not body.image_url:
        raise InvalidRequestError("Image URL is required")
    result = analysis.verify_image(body.image_url)
    updated = store.verify_report_images(disaster_id, body.image_url, result, user)
    logger.info(f"Image verified for disaster {disaster_id}: {result.analysis} ({updated} reports updated)")
    return {"verification": result.model_dump(mode="json")}


@router.post("/disasters/{disaster_id}/resources", response_model=Resource, status_code=201)
async def create_resource(
    disaster_id: str,
    body: ResourceCreate,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
):
    resource = store.create_resource(disaster_id, body, user)
    logger.info(f"Resource created for disaster {disaster_id}: {resource.name}")
    bus.publish(events.resource_created(disaster_id, dump(resource)))
    return resource


@router.get("/disasters/{disaster_id}/resources", response_model=list[Resource])
async def list_resources(
    disaster_id: str,
    resource_type: str | None = Query(None),
    store=Depends(get_store),
):
    return store.list_resources(disaster_id, resource_type=resource_type)
