"""
MODULE OVERVIEW:
Disaster CRUD routes.

WHAT IS HAPPENING HERE:
Each mutating route follows the same two steps: commit the change to the store,
then publish the matching event. If the store raises, nothing is published; if
delivery fails, the HTTP response is unaffected because `bus.publish` never raises.
"""
import asyncio
from fastapi import APIRouter, Depends, Query, Request, Response
from loguru import logger

from disaster_sync.shared import events
from disaster_sync.shared.config import settings
from disaster_sync.shared.models import BulkUpdate, Disaster, DisasterCreate, DisasterUpdate, dump
from disaster_sync.server import analysis
from disaster_sync.server.deps import User, get_bus, get_current_user, get_feeds, get_store
from disaster_sync.server.feeds import initial_fetch

router = APIRouter()


def spawn(request: Request, coro) -> None:
    """Track a fire-and-forget task so the lifespan can cancel it on shutdown."""
    task = asyncio.create_task(coro)
    tasks = request.app.state.background_tasks
    tasks.add(task)
    task.add_done_callback(tasks.discard)


@router.post("/disasters", response_model=Disaster, status_code=201)
async def create_disaster(
    body: DisasterCreate,
    request: Request,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
    feeds=Depends(get_feeds),
):
    location_name = body.location_name
    if not location_name and body.description:
        location_name = analysis.extract_location(body.description)

    disaster = store.create_disaster(body, user, location_name=location_name)
    logger.info(f"Disaster created: {disaster.title} at {disaster.location_name}")
    bus.publish(events.disaster_created(dump(disaster)))

    spawn(request, initial_fetch(disaster.id, store, feeds, bus, settings.INITIAL_FETCH_DELAY_S))
    return disaster


@router.get("/disasters", response_model=list[Disaster])
async def list_disasters(
    tag: str | None = Query(None),
    status: str | None = Query(None),
    disaster_type: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    store=Depends(get_store),
):
    return store.list_disasters(tag=tag, status=status, disaster_type=disaster_type, limit=limit)


@router.post("/disasters/bulk-update")
async def bulk_update(
    body: BulkUpdate,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
):
    updated = store.bulk_update(body.disaster_ids, body.updates, user)
    logger.info(f"Bulk update completed for {len(updated)} disasters by {user.id}")
    for disaster in updated:
        bus.publish(events.disaster_updated(dump(disaster)))
    return {"updated_count": len(updated), "disasters": [dump(d) for d in updated]}


@router.get("/disasters/{disaster_id}", response_model=Disaster)
async def get_disaster(disaster_id: str, store=Depends(get_store)):
    return store.get_disaster(disaster_id)


@router.put("/disasters/{disaster_id}", response_model=Disaster)
async def update_disaster(
    disaster_id: str,
    body: DisasterUpdate,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
):
    disaster = store.update_disaster(disaster_id, body, user)
    logger.info(f"Disaster updated: {disaster_id} by {user.id}")
    bus.publish(events.disaster_updated(dump(disaster)))
    return disaster


@router.delete("/disasters/{disaster_id}", status_code=204)
async def delete_disaster(
    disaster_id: str,
    user: User = Depends(get_current_user),
    store=Depends(get_store),
    bus=Depends(get_bus),
):
    store.delete_disaster(disaster_id, user)
    logger.info(f"Disaster deleted: {disaster_id} by {user.id}")
    bus.publish(events.disaster_deleted(disaster_id))
    return Response(status_code=204)
