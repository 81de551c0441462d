import asyncio

import httpx
import pytest

from disaster_sync.client.connectivity import ConnectivityManager
from disaster_sync.client.notifications import NotificationCenter
from disaster_sync.client.sync import SyncController
from disaster_sync.shared import events
from disaster_sync.shared.events import EventKind

from fakes import FakeRealtimeServer, wait_for


def disaster(did, title="Flood", **fields):
    return {"id": did, "title": title, **fields}


def report(did, rid, content="Need water"):
    return {"id": rid, "disaster_id": did, "user_id": "citizen1", "content": content}


class Api:
    """A tiny fake REST backend keyed by (method, path)."""

    def __init__(self):
        self.routes = {}
        self.down = False
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.down:
            return httpx.Response(503)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"error": {"code": "NOT_FOUND", "message": "nope"}})
        return httpx.Response(200, json=self.routes[key])


@pytest.fixture
async def controller():
    api = Api()
    notifications = NotificationCenter()
    connectivity = ConnectivityManager(
        "http://primary.test",
        "http://fallback.test",
        notifications=notifications,
        transport=httpx.MockTransport(api),
    )
    server = FakeRealtimeServer("primary.test")
    ctrl = SyncController(
        connectivity,
        notifications,
        client_id="dash",
        connect_fn=server.connect,
        reconnect_delay_s=0.01,
    )
    ctrl.api = api
    ctrl.server = server
    yield ctrl
    await ctrl.stop()


def test_every_event_kind_has_a_handler():
    assert set(SyncController.HANDLERS) == set(EventKind)


async def test_disaster_created_is_idempotent(controller):
    event = events.disaster_created(disaster("d1"))

    controller.apply(event)
    controller.apply(event)

    assert [d.id for d in controller.disasters] == ["d1"]
    assert controller.notifications.sent("New disaster reported") == 1


async def test_update_and_delete_are_noops_for_unknown_ids(controller):
    controller.apply(events.disaster_created(disaster("d1")))

    controller.apply(events.disaster_updated(disaster("d2", "Ghost")))
    controller.apply(events.disaster_deleted("d2"))
    assert [d.id for d in controller.disasters] == ["d1"]

    controller.apply(events.disaster_updated(disaster("d1", "Flood (contained)", status="monitoring")))
    assert controller.disasters[0].title == "Flood (contained)"
    assert controller.disasters[0].status == "monitoring"


async def test_deleting_selected_disaster_clears_selection(controller):
    controller.apply(events.disaster_created(disaster("d1")))
    controller.selected_id = "d1"
    controller.apply(events.report_created("d1", report("d1", "r1")))

    controller.apply(events.disaster_deleted("d1"))

    assert controller.disasters == []
    assert controller.selected_id is None
    assert controller.reports == []


async def test_reports_for_other_disasters_are_ignored(controller):
    controller.selected_id = "d1"

    controller.apply(events.report_created("d2", report("d2", "r2")))
    controller.apply(events.report_created("d1", report("d1", "r1")))
    controller.apply(events.report_created("d1", report("d1", "r1")))

    assert [r.id for r in controller.reports] == ["r1"]
    assert controller.notifications.sent("New report received") == 1


async def test_scoped_feeds_and_locations_follow_the_selection(controller):
    controller.selected_id = "d1"

    controller.apply(events.social_data_updated("d2", [{"post": "elsewhere"}]))
    controller.apply(events.social_data_updated("d1", [{"post": "here"}]))
    controller.apply(events.official_data_updated("d1", [{"source": "FEMA"}]))
    controller.apply(events.resource_created("d1", {"id": "x1", "disaster_id": "d1", "name": "Shelter"}))
    controller.apply(events.location_updated("d2", "u2", {"lat": 0}))
    controller.apply(events.location_updated("d1", "u1", {"lat": 1}))

    assert controller.social_media == [{"post": "here"}]
    assert controller.official_updates == [{"source": "FEMA"}]
    assert [r.name for r in controller.resources] == ["Shelter"]
    assert controller.user_locations == {"u1": {"lat": 1}}


async def test_emergency_alerts_always_surface(controller):
    controller.apply(events.emergency_alert("Levee breach", "critical", disaster_id="d9"))

    assert controller.alerts[0]["message"] == "Levee breach"
    active = controller.notifications.active()
    assert active[-1].level == "error"
    assert active[-1].message == "EMERGENCY: Levee breach"


async def test_malformed_payload_is_dropped(controller):
    controller.apply(events.Event(kind=EventKind.DISASTER_CREATED, payload={"action": "create"}))
    assert controller.disasters == []


async def test_rest_create_and_event_do_not_duplicate(controller):
    controller.api.routes[("POST", "/disasters")] = disaster("d1")

    created = await controller.create_disaster("Flood")
    controller.apply(events.disaster_created(disaster("d1")))

    assert created.id == "d1"
    assert [d.id for d in controller.disasters] == ["d1"]


async def test_failed_load_keeps_last_known_state(controller):
    controller.api.routes[("GET", "/disasters")] = [disaster("d1")]
    assert await controller.load_disasters()

    controller.api.down = True
    assert not await controller.load_disasters()

    assert [d.id for d in controller.disasters] == ["d1"]
    assert controller.notifications.sent("Failed to load disasters") == 1


async def test_details_fail_independently(controller):
    controller.selected_id = "d1"
    controller.api.routes[("GET", "/disasters/d1/reports")] = [report("d1", "r1")]

    assert not await controller.load_disaster_details("d1")

    assert [r.id for r in controller.reports] == ["r1"]
    assert controller.resources == []
    assert controller.social_media == []
    assert controller.analytics is None
    assert controller.notifications.sent("Failed to load disaster details") == 1


async def test_stale_details_are_discarded(controller):
    controller.api.routes[("GET", "/disasters/d1/reports")] = [report("d1", "r1")]
    controller.selected_id = "d2"

    await controller.load_disaster_details("d1")

    assert controller.reports == []


async def test_submit_report_requires_selection(controller):
    assert await controller.submit_report("Help") is None
    assert controller.api.calls == []

    controller.selected_id = "d1"
    controller.api.routes[("POST", "/reports")] = report("d1", "r1", "Help")
    submitted = await controller.submit_report("Help")
    assert submitted.id == "r1"
    # The echo from the server must not duplicate it
    controller.apply(events.report_created("d1", report("d1", "r1", "Help")))
    assert [r.id for r in controller.reports] == ["r1"]


async def test_selection_moves_the_subscription_and_survives_reconnect(controller):
    await controller.realtime.start()
    await wait_for(lambda: controller.realtime.connected)

    await controller.select_disaster("d1")
    await controller.select_disaster("d2")
    sock = controller.server.sockets[0]
    assert sock.sent == [
        {"action": "join_disaster", "disaster_id": "d1"},
        {"action": "leave_disaster", "disaster_id": "d1"},
        {"action": "join_disaster", "disaster_id": "d2"},
    ]

    sock.drop()
    await wait_for(lambda: len(controller.server.sockets) == 2 and controller.realtime.connected)
    await wait_for(lambda: controller.server.sockets[1].sent != [])

    assert controller.server.sockets[1].sent == [{"action": "join_disaster", "disaster_id": "d2"}]


async def test_alert_needs_a_connection(controller):
    assert not await controller.send_emergency_alert("Evacuate")
    assert controller.notifications.sent("Alert not sent: real-time connection unavailable") == 1

    await controller.realtime.start()
    await wait_for(lambda: controller.realtime.connected)
    assert await controller.send_emergency_alert("Evacuate", severity="critical")
    assert controller.server.sockets[0].sent[-1]["message"] == "Evacuate"


async def test_degraded_mode_polls(controller):
    controller.poll_interval_s = 0.01
    controller.realtime.degraded = True
    controller.api.routes[("GET", "/disasters")] = [disaster("d1")]

    task = asyncio.create_task(controller._poll_while_degraded())
    await wait_for(lambda: controller.disasters != [])
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    assert controller.disasters[0].id == "d1"


async def test_overlapping_selections_leave_one_subscription(controller):
    await controller.realtime.start()
    await wait_for(lambda: controller.realtime.connected)

    await asyncio.gather(controller.select_disaster("d1"), controller.select_disaster("d2"))
    sock = controller.server.sockets[0]
    assert sock.joined_scopes() == {"d2"}

    await controller.select_disaster("d3")
    assert sock.joined_scopes() == {"d3"}
    assert controller.selected_id == "d3"


async def test_rapid_selection_changes_never_accumulate_scopes(controller):
    await controller.realtime.start()
    await wait_for(lambda: controller.realtime.connected)

    await asyncio.gather(*(controller.select_disaster(f"d{n}") for n in range(10)))
    await controller.select_disaster(None)

    assert controller.server.sockets[0].joined_scopes() == set()


async def test_refresh_while_offline_keeps_last_known_details(controller):
    did = "d1"
    controller.api.routes[("GET", "/disasters")] = [disaster(did)]
    controller.api.routes[("GET", f"/disasters/{did}/reports")] = [report(did, "r1")]
    controller.api.routes[("GET", f"/disasters/{did}/resources")] = [{"id": "x1", "disaster_id": did, "name": "Shelter"}]
    controller.api.routes[("GET", f"/disasters/{did}/social-media")] = [{"post": "here"}]
    controller.api.routes[("GET", f"/disasters/{did}/analytics")] = {"total_reports": 1}
    await controller.load_disasters()
    await controller.select_disaster(did)
    assert [r.id for r in controller.reports] == ["r1"]

    controller.api.down = True
    await controller.refresh()
    await controller.refresh()

    assert [d.id for d in controller.disasters] == [did]
    assert [r.id for r in controller.reports] == ["r1"]
    assert [r.name for r in controller.resources] == ["Shelter"]
    assert controller.social_media == [{"post": "here"}]
    assert controller.analytics == {"total_reports": 1}
    assert controller.notifications.sent("Failed to load disaster details") == 2
    details = [n for n in controller.notifications.active() if n.purpose == "details"]
    assert len(details) == 1
