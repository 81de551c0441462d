"""
MODULE OVERVIEW:
The client sync controller: the dashboard's local view of the world.

WHAT IS HAPPENING HERE:
Local state has two sources. REST calls fetch a baseline (the disaster list, and
the reports/resources/feeds of the selected disaster). Events pushed over the
WebSocket then patch that baseline. Both paths run on the same asyncio loop and
go through the same merge helpers, so they never race on an entity.

Merge rules:
  - a created disaster is prepended unless its id is already known
  - an updated disaster replaces the known one; unknown ids are ignored
  - a deleted disaster is removed; unknown ids are ignored
  - anything scoped to a disaster is applied only if that disaster is selected

The subscription follows the selection: selecting a disaster leaves the previous
scope and joins the new one, and the scope is joined again after every reconnect
because the server forgets subscriptions when a connection drops.
"""

import asyncio
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, List
from loguru import logger
from pydantic import ValidationError

from disaster_sync.client.connectivity import ConnectivityManager
from disaster_sync.client.notifications import NotificationCenter
from disaster_sync.client.realtime import RealtimeConnection
from disaster_sync.shared.config import settings
from disaster_sync.shared.errors import ServerUnavailableError
from disaster_sync.shared.events import Event, EventKind
from disaster_sync.shared.models import Disaster, Report, Resource

# Marks a detail slice that could not be fetched from either endpoint
UNAVAILABLE = object()


class SyncController:
    # Every EventKind must have a handler; checked at import time below.
    HANDLERS: Dict[EventKind, str] = {
        EventKind.DISASTER_CREATED: "_on_disaster_created",
        EventKind.DISASTER_UPDATED: "_on_disaster_updated",
        EventKind.DISASTER_DELETED: "_on_disaster_deleted",
        EventKind.REPORT_CREATED: "_on_report_created",
        EventKind.RESOURCE_CREATED: "_on_resource_created",
        EventKind.SOCIAL_DATA_UPDATED: "_on_social_data_updated",
        EventKind.OFFICIAL_DATA_UPDATED: "_on_official_data_updated",
        EventKind.EMERGENCY_ALERT: "_on_emergency_alert",
        EventKind.LOCATION_UPDATED: "_on_location_updated",
    }

    def __init__(
        self,
        connectivity: ConnectivityManager,
        notifications: NotificationCenter,
        client_id: str | None = None,
        poll_interval_s: float = settings.POLL_INTERVAL_S,
        **realtime_options: Any,
    ):
        self.client_id = client_id or f"dashboard-{uuid.uuid4().hex[:6]}"
        self.connectivity = connectivity
        self.notifications = notifications
        self.poll_interval_s = poll_interval_s
        self.realtime = RealtimeConnection(
            self.client_id,
            connectivity,
            notifications,
            on_event=self.apply,
            on_connected=self._on_connected,
            **realtime_options,
        )
        self._handlers: Dict[EventKind, Callable[[Event], None]] = {
            kind: getattr(self, name) for kind, name in self.HANDLERS.items()
        }

        self.disasters: List[Disaster] = []
        self.selected_id: str | None = None
        self.reports: List[Report] = []
        self.resources: List[Resource] = []
        self.social_media: List[Dict[str, Any]] = []
        self.official_updates: List[Dict[str, Any]] = []
        self.analytics: Dict[str, Any] | None = None
        self.user_locations: Dict[str, Any] = {}
        self.alerts: Deque[Dict[str, Any]] = deque(maxlen=settings.ALERT_HISTORY_SIZE)

        self._joined: str | None = None
        self._subscription_lock = asyncio.Lock()
        self._poll_task: asyncio.Task | None = None

    @property
    def selected(self) -> Disaster | None:
        return next((d for d in self.disasters if d.id == self.selected_id), None)

    # ==========================
    # LIFECYCLE
    # ==========================
    async def start(self) -> None:
        await self.realtime.start()
        await self.load_disasters()
        self._poll_task = asyncio.create_task(self._poll_while_degraded())

    async def stop(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
            self._poll_task = None
        await self.realtime.close()
        await self.connectivity.aclose()

    async def _poll_while_degraded(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval_s)
            if self.realtime.degraded:
                await self.refresh()

    async def _on_connected(self) -> None:
        await self._sync_subscription(fresh_connection=True)

    async def _sync_subscription(self, fresh_connection: bool = False) -> None:
        """Converge the server-side subscription onto the current selection."""
        async with self._subscription_lock:
            if fresh_connection:
                # A fresh connection has no subscriptions on the server side.
                self._joined = None
            # The selection can move while a frame is in flight, so re-check after every send.
            while self._joined != self.selected_id:
                if self._joined is not None:
                    previous, self._joined = self._joined, None
                    await self.realtime.send("leave_disaster", disaster_id=previous)
                    continue
                target = self.selected_id
                if not await self.realtime.send("join_disaster", disaster_id=target):
                    # Not connected; _on_connected joins once a socket is up.
                    return
                self._joined = target

    # ==========================
    # INBOUND EVENTS
    # ==========================
    def apply(self, event: Event) -> None:
        try:
            self._handlers[event.kind](event)
        except (KeyError, ValidationError) as e:
            logger.warning(f"Dropping malformed {event.kind.value} event {event.event_id}: {e}")

    def _is_selected(self, event: Event) -> bool:
        return self.selected_id is not None and event.scope == self.selected_id

    def _on_disaster_created(self, event: Event) -> None:
        if self._merge_disaster(Disaster.model_validate(event.payload["disaster"])):
            self.notifications.notify("New disaster reported", "info")

    def _on_disaster_updated(self, event: Event) -> None:
        disaster = Disaster.model_validate(event.payload["disaster"])
        for i, known in enumerate(self.disasters):
            if known.id == disaster.id:
                self.disasters[i] = disaster
                self.notifications.notify("Disaster updated", "info")
                return

    def _on_disaster_deleted(self, event: Event) -> None:
        self._remove_disaster(event.payload["id"])

    def _on_report_created(self, event: Event) -> None:
        if not self._is_selected(event):
            return
        report = Report.model_validate(event.payload["report"])
        if any(r.id == report.id for r in self.reports):
            return
        self.reports.insert(0, report)
        self.notifications.notify("New report received", "warning")

    def _on_resource_created(self, event: Event) -> None:
        if not self._is_selected(event):
            return
        resource = Resource.model_validate(event.payload["resource"])
        if any(r.id == resource.id for r in self.resources):
            return
        self.resources.insert(0, resource)
        self.notifications.notify("New resource available", "info")

    def _on_social_data_updated(self, event: Event) -> None:
        if not self._is_selected(event):
            return
        self.social_media = list(event.payload["data"])
        self.notifications.notify("Social media updated", "success", purpose="social")

    def _on_official_data_updated(self, event: Event) -> None:
        if not self._is_selected(event):
            return
        self.official_updates = list(event.payload["data"])
        self.notifications.notify("Official updates received", "info", purpose="official")

    def _on_emergency_alert(self, event: Event) -> None:
        self.alerts.appendleft(event.payload)
        self.notifications.notify(f"EMERGENCY: {event.payload['message']}", "error")

    def _on_location_updated(self, event: Event) -> None:
        if not self._is_selected(event):
            return
        self.user_locations[event.payload["user_id"]] = event.payload["location"]

    # ==========================
    # MERGE HELPERS
    # ==========================
    def _merge_disaster(self, disaster: Disaster) -> bool:
        if any(d.id == disaster.id for d in self.disasters):
            return False
        self.disasters.insert(0, disaster)
        return True

    def _remove_disaster(self, disaster_id: str) -> bool:
        before = len(self.disasters)
        self.disasters = [d for d in self.disasters if d.id != disaster_id]
        if disaster_id == self.selected_id:
            self._reset_selection(None)
        return len(self.disasters) != before

    def _reset_selection(self, disaster_id: str | None) -> None:
        self.selected_id = disaster_id
        self.reports = []
        self.resources = []
        self.social_media = []
        self.official_updates = []
        self.analytics = None
        self.user_locations = {}

    # ==========================
    # SELECTION
    # ==========================
    async def select_disaster(self, disaster_id: str | None) -> None:
        if disaster_id != self.selected_id:
            self._reset_selection(disaster_id)
        await self._sync_subscription()
        if disaster_id is not None:
            await self.load_disaster_details(disaster_id)

    # ==========================
    # REST
    # ==========================
    async def _fetch(self, path: str) -> Any:
        try:
            return await self.connectivity.request("GET", path)
        except ServerUnavailableError as e:
            logger.error(f"{path} unavailable: {e}")
            return UNAVAILABLE

    async def load_disasters(self) -> bool:
        try:
            data = await self.connectivity.request("GET", "/disasters")
        except ServerUnavailableError:
            self.notifications.notify("Failed to load disasters", "error", purpose="load")
            return False
        self.disasters = [Disaster.model_validate(d) for d in data or []]
        return True

    async def load_disaster_details(self, disaster_id: str) -> bool:
        """
        Fetch the four detail slices of a disaster. Each slice fails on its own:
        a slice that could not be fetched keeps its last-known value.
        Returns False if any slice failed.
        """
        social, resources, reports, analytics = await asyncio.gather(
            self._fetch(f"/disasters/{disaster_id}/social-media"),
            self._fetch(f"/disasters/{disaster_id}/resources"),
            self._fetch(f"/disasters/{disaster_id}/reports"),
            self._fetch(f"/disasters/{disaster_id}/analytics"),
        )
        if self.selected_id != disaster_id:
            # Selection moved on while we were waiting; this baseline is stale.
            return True
        if social is not UNAVAILABLE:
            self.social_media = social or []
        if resources is not UNAVAILABLE:
            self.resources = [Resource.model_validate(r) for r in resources or []]
        if reports is not UNAVAILABLE:
            self.reports = [Report.model_validate(r) for r in reports or []]
        if analytics is not UNAVAILABLE:
            self.analytics = analytics

        if any(part is UNAVAILABLE for part in (social, resources, reports, analytics)):
            self.notifications.notify("Failed to load disaster details", "error", purpose="details")
            return False
        return True

    async def refresh(self) -> None:
        await self.load_disasters()
        if self.selected_id is not None:
            await self.load_disaster_details(self.selected_id)

    async def create_disaster(self, title: str, **fields: Any) -> Disaster | None:
        try:
            data = await self.connectivity.request("POST", "/disasters", json={"title": title, **fields})
        except ServerUnavailableError:
            self.notifications.notify("Failed to create disaster", "error")
            return None
        disaster = Disaster.model_validate(data)
        self._merge_disaster(disaster)
        self.notifications.notify("Disaster created successfully", "success")
        return disaster

    async def update_disaster(self, disaster_id: str, **changes: Any) -> Disaster | None:
        try:
            data = await self.connectivity.request("PUT", f"/disasters/{disaster_id}", json=changes)
        except ServerUnavailableError:
            self.notifications.notify("Failed to update disaster", "error")
            return None
        disaster = Disaster.model_validate(data)
        self.disasters = [disaster if d.id == disaster.id else d for d in self.disasters]
        return disaster

    async def delete_disaster(self, disaster_id: str) -> bool:
        try:
            await self.connectivity.request("DELETE", f"/disasters/{disaster_id}")
        except ServerUnavailableError:
            self.notifications.notify("Failed to delete disaster", "error")
            return False
        self._remove_disaster(disaster_id)
        return True

    async def submit_report(self, content: str, **fields: Any) -> Report | None:
        if self.selected_id is None:
            self.notifications.notify("Select a disaster before reporting", "warning")
            return None
        body = {"disaster_id": self.selected_id, "content": content, **fields}
        try:
            data = await self.connectivity.request("POST", "/reports", json=body)
        except ServerUnavailableError:
            self.notifications.notify("Failed to submit report", "error")
            return None
        report = Report.model_validate(data)
        if report.disaster_id == self.selected_id and not any(r.id == report.id for r in self.reports):
            self.reports.insert(0, report)
        self.notifications.notify("Report submitted successfully", "success")
        return report

    async def add_resource(self, name: str, **fields: Any) -> Resource | None:
        if self.selected_id is None:
            self.notifications.notify("Select a disaster before adding resources", "warning")
            return None
        disaster_id = self.selected_id
        try:
            data = await self.connectivity.request(
                "POST", f"/disasters/{disaster_id}/resources", json={"name": name, **fields}
            )
        except ServerUnavailableError:
            self.notifications.notify("Failed to add resource", "error")
            return None
        resource = Resource.model_validate(data)
        if disaster_id == self.selected_id and not any(r.id == resource.id for r in self.resources):
            self.resources.insert(0, resource)
        return resource

    # ==========================
    # REAL-TIME CONTROL
    # ==========================
    async def send_emergency_alert(
        self,
        message: str,
        severity: str = "high",
        location: Any = None,
        disaster_id: str | None = None,
    ) -> bool:
        sent = await self.realtime.send(
            "emergency_alert", disaster_id=disaster_id, message=message, severity=severity, location=location
        )
        if not sent:
            self.notifications.notify("Alert not sent: real-time connection unavailable", "error")
        return sent

    async def send_location(self, user_id: str, location: Any) -> bool:
        if self.selected_id is None:
            return False
        return await self.realtime.send(
            "location_update", disaster_id=self.selected_id, user_id=user_id, location=location
        )


_missing = set(EventKind) - set(SyncController.HANDLERS)
if _missing:
    raise RuntimeError(f"SyncController has no handler for {sorted(k.value for k in _missing)}")
