import asyncio

import pytest

from disaster_sync.client.connectivity import ConnectivityManager, LinkState
from disaster_sync.client.notifications import NotificationCenter
from disaster_sync.client.realtime import RealtimeConnection
from disaster_sync.shared import events
from disaster_sync.shared.events import EventKind

from fakes import FakeRealtimeServer, wait_for

SWITCHED = "Switched to local server"
CONNECTED = "Connected to real-time updates"
DEGRADED = "Real-time features unavailable - using polling mode"


@pytest.fixture
async def make_connection():
    created = []

    def _make(server: FakeRealtimeServer, **options):
        notifications = NotificationCenter()
        connectivity = ConnectivityManager("http://primary.test", "http://fallback.test", notifications=notifications)
        received = []
        options.setdefault("reconnect_attempts", 3)
        options.setdefault("reconnect_delay_s", 0.01)
        options.setdefault("fallback_timeout_s", 5.0)
        conn = RealtimeConnection(
            "dash",
            connectivity,
            notifications,
            on_event=received.append,
            connect_fn=server.connect,
            **options,
        )
        created.append(conn)
        return conn, notifications, received

    yield _make
    for conn in created:
        await conn.close()
        await conn.connectivity.aclose()


async def test_connects_to_primary_and_cancels_fallback_timer(make_connection):
    server = FakeRealtimeServer("primary.test")
    conn, notifications, _ = make_connection(server, fallback_timeout_s=0.05)

    await conn.start()
    await wait_for(lambda: conn.connected)
    await asyncio.sleep(0.1)

    assert conn.status == "CONNECTED"
    assert conn.connectivity.link_state is LinkState.USING_PRIMARY
    assert notifications.sent(SWITCHED) == 0
    assert notifications.sent(CONNECTED) == 1
    assert server.sockets[0].url == "ws://primary.test/ws?client_id=dash"


async def test_fallback_timer_moves_to_fallback_once(make_connection):
    server = FakeRealtimeServer("fallback.test")
    conn, notifications, _ = make_connection(server, fallback_timeout_s=0.05)

    await conn.start()
    await wait_for(lambda: conn.connected)

    assert conn.connectivity.on_fallback
    assert set(server.attempts) == {"primary.test", "fallback.test"}
    assert server.attempts[-1] == "fallback.test"
    assert notifications.sent(SWITCHED) == 1
    assert notifications.sent(CONNECTED) == 1


async def test_losing_primary_after_connect_switches_when_attempts_run_out(make_connection):
    server = FakeRealtimeServer("primary.test", "fallback.test")
    conn, notifications, _ = make_connection(server, reconnect_attempts=2)

    await conn.start()
    await wait_for(lambda: conn.connected)
    server.reachable.discard("primary.test")
    server.sockets[0].drop()
    await wait_for(lambda: len(server.sockets) == 2 and conn.connected)

    assert conn.connectivity.on_fallback
    # One initial success, then 3 failed attempts before giving up on the primary
    assert server.attempts == ["primary.test"] * 4 + ["fallback.test"]
    assert notifications.sent(SWITCHED) == 1


async def test_both_unreachable_ends_degraded(make_connection):
    server = FakeRealtimeServer()
    conn, notifications, _ = make_connection(server, reconnect_attempts=1, fallback_timeout_s=0.03)

    await conn.start()
    await wait_for(lambda: conn.degraded)

    assert conn.status == "DEGRADED"
    assert notifications.degraded
    assert notifications.sent(SWITCHED) == 1
    assert notifications.sent(DEGRADED) == 1
    assert server.attempts.count("fallback.test") == 2

    # Nothing keeps retrying once degraded.
    attempts = len(server.attempts)
    await asyncio.sleep(0.05)
    assert len(server.attempts) == attempts


async def test_reconnects_after_drop(make_connection):
    server = FakeRealtimeServer("primary.test")
    conn, notifications, _ = make_connection(server)

    await conn.start()
    await wait_for(lambda: conn.connected)
    server.sockets[0].drop()
    await wait_for(lambda: len(server.sockets) == 2 and conn.connected)

    assert conn.stats["reconnect_count"] == 1
    assert notifications.sent("Disconnected from real-time updates") == 1
    assert notifications.sent(CONNECTED) == 2


async def test_frames_are_decoded_and_bad_ones_counted(make_connection):
    server = FakeRealtimeServer("primary.test")
    conn, _, received = make_connection(server)

    await conn.start()
    await wait_for(lambda: conn.connected)
    sock = server.sockets[0]
    sock.push(events.encode_frame(events.disaster_deleted("d1")))
    sock.push(events.heartbeat_frame())
    sock.push("garbage")
    await wait_for(lambda: conn.stats["frames_rejected"] == 1)

    assert [e.kind for e in received] == [EventKind.DISASTER_DELETED]
    assert conn.stats["events_received"] == 1
    assert conn.connected


async def test_send_requires_a_live_socket(make_connection):
    server = FakeRealtimeServer("primary.test")
    conn, _, _ = make_connection(server)

    assert not await conn.send("join_disaster", disaster_id="d1")

    await conn.start()
    await wait_for(lambda: conn.connected)
    assert await conn.send("join_disaster", disaster_id="d1")
    assert server.sockets[0].sent == [{"action": "join_disaster", "disaster_id": "d1"}]

    await conn.close()
    assert conn.status == "CLOSED"
    assert not await conn.send("join_disaster", disaster_id="d1")
