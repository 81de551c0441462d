"""
MODULE OVERVIEW:
Read-side routes backed by external collaborators: social media, official
updates, analytics and the text analyzer.

WHAT IS HAPPENING HERE:
Fetching a feed also republishes it to the disaster's room, so every dashboard
watching that disaster sees the fresh data, not just the one that asked.
"""
from fastapi import APIRouter, Depends, Query

from disaster_sync.shared import events
from disaster_sync.shared.models import Analytics, AnalyzeRequest, AnalyzeResponse
from disaster_sync.server import analysis
from disaster_sync.server.deps import get_bus, get_feeds, get_store

router = APIRouter()


@router.get("/disasters/{disaster_id}/social-media")
async def social_media(
    disaster_id: str,
    keywords: str | None = Query(None, description="Comma separated"),
    store=Depends(get_store),
    feeds=Depends(get_feeds),
    bus=Depends(get_bus),
):
    disaster = store.get_disaster(disaster_id)
    words = [k.strip() for k in keywords.split(",") if k.strip()] if keywords else None
    data = feeds.social_media(disaster, words)
    bus.publish(events.social_data_updated(disaster_id, data))
    return data


@router.get("/disasters/{disaster_id}/official-updates")
async def official_updates(
    disaster_id: str,
    store=Depends(get_store),
    feeds=Depends(get_feeds),
    bus=Depends(get_bus),
):
    disaster = store.get_disaster(disaster_id)
    data = feeds.official_updates(disaster)
    bus.publish(events.official_data_updated(disaster_id, data))
    return data


@router.get("/disasters/{disaster_id}/analytics", response_model=Analytics)
async def disaster_analytics(disaster_id: str, store=Depends(get_store)):
    return store.analytics(disaster_id)


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_text(body: AnalyzeRequest):
    return analysis.analyze(body.text)
