"""
MODULE OVERVIEW:
Mock social-media and official-update sources, and the periodic refresher.

WHAT IS HAPPENING HERE:
In production these would be a social network search API and scrapers of
official agency pages. Here, we simulate them so the dashboard has realistic
traffic: posts are built from the disaster's tags, and the randomness is seeded
by the disaster id so the same disaster always yields the same feed.

The refresher runs as a background task started by the app lifespan. For each
active disaster it republishes both feeds, scoped to that disaster, so only the
dashboards looking at it receive the update.
"""

import asyncio
import random
from datetime import timedelta
from typing import Any, Dict, List
from loguru import logger

from disaster_sync.shared.config import settings
from disaster_sync.shared import events
from disaster_sync.shared.models import Disaster, OfficialUpdate, SocialPost, dump, utcnow
from disaster_sync.server.cache import TTLCache
from disaster_sync.server.event_bus import EventBus
from disaster_sync.server.store import DisasterStore

DEFAULT_KEYWORDS = ["floodrelief", "disaster", "urgent", "help", "emergency"]

POST_TEMPLATES = [
    ("#{0} Need food supplies in affected area", "citizen1"),
    ("Water shortage reported #{1}", "helpseeker"),
    ("SOS - medical assistance needed #{2}", "emergency123"),
    ("Evacuation route blocked, need alternative #{0}", "localresident"),
    ("Shelter space available for 50 people #{1}", "reliefcenter"),
]

OFFICIAL_SOURCES = [
    ("FEMA", "https://www.fema.gov/disaster/current", "Federal assistance status for {0}"),
    ("Red Cross", "https://www.redcross.org/about-us/news-and-events", "Shelters open near {0}"),
    ("National Weather Service", "https://www.weather.gov/alerts", "Active warnings for {0}"),
]


def mock_social_posts(disaster_id: str, keywords: List[str]) -> List[SocialPost]:
    """Five posts built from the disaster's keywords."""
    words = list(keywords) or DEFAULT_KEYWORDS
    while len(words) < 3:
        words.append(DEFAULT_KEYWORDS[len(words)])
    rng = random.Random(disaster_id)
    now = utcnow()
    return [
        SocialPost(
            post=template.format(*words),
            user=user,
            timestamp=now - timedelta(minutes=rng.randint(0, 120)),
        )
        for template, user in POST_TEMPLATES
    ]


def mock_official_updates(disaster_id: str, location_name: str | None) -> List[OfficialUpdate]:
    place = location_name or "the affected region"
    rng = random.Random(disaster_id)
    now = utcnow()
    return [
        OfficialUpdate(
            source=source,
            title=title.format(place),
            url=url,
            published_at=now - timedelta(hours=rng.randint(0, 12)),
            summary=f"{source} update for {place}.",
        )
        for source, url, title in OFFICIAL_SOURCES
    ]


class FeedService:
    """Cached access to both feeds."""

    def __init__(self, cache: TTLCache):
        self.cache = cache

    def social_media(self, disaster: Disaster, keywords: List[str] | None = None) -> List[Dict[str, Any]]:
        words = keywords if keywords else disaster.tags
        key = f"social_{disaster.id}_{'_'.join(words)}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = [dump(p) for p in mock_social_posts(disaster.id, words)]
        self.cache.set(key, data, settings.SOCIAL_CACHE_TTL_S)
        return data

    def official_updates(self, disaster: Disaster) -> List[Dict[str, Any]]:
        key = f"official_{disaster.id}_{disaster.location_name or 'general'}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        data = [dump(u) for u in mock_official_updates(disaster.id, disaster.location_name)]
        self.cache.set(key, data)
        return data

    def publish_for(self, disaster: Disaster, bus: EventBus) -> None:
        bus.publish(events.social_data_updated(disaster.id, self.social_media(disaster)))
        bus.publish(events.official_data_updated(disaster.id, self.official_updates(disaster)))


async def initial_fetch(disaster_id: str, store: DisasterStore, feeds: FeedService, bus: EventBus, delay_s: float = 1.0):
    """Runs shortly after a disaster is created so its room gets first data."""
    await asyncio.sleep(delay_s)
    try:
        feeds.publish_for(store.get_disaster(disaster_id), bus)
    except Exception as e:
        logger.error(f"Error fetching initial data for disaster {disaster_id}: {e}")


async def refresh_active_disasters(store: DisasterStore, feeds: FeedService, bus: EventBus) -> int:
    active = store.list_disasters(status="active", limit=settings.FEED_REFRESH_LIMIT)
    for disaster in active:
        feeds.publish_for(disaster, bus)
    feeds.cache.purge_expired()
    if active:
        logger.info(f"Updated feeds for {len(active)} active disasters")
    return len(active)


async def feed_refresher(store: DisasterStore, feeds: FeedService, bus: EventBus, interval_s: float):
    """Consumes the refresh schedule forever; cancelled by the app lifespan."""
    try:
        while True:
            await asyncio.sleep(interval_s)
            try:
                await refresh_active_disasters(store, feeds, bus)
            except Exception as e:
                logger.error(f"Periodic update error: {e}")
    except asyncio.CancelledError:
        logger.debug("Feed refresher cancelled")
        raise
