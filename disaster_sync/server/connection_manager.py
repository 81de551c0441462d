"""
MODULE OVERVIEW:
The subscription registry: the one shared mutable structure on the server.

WHAT IS HAPPENING HERE:
This object holds every accepted WebSocket and the set of disaster scopes each one
has joined. When `publish()` is called (via the EventBus) it encodes the event once
and drops the frame onto the outbound queue of every matching connection:
  - scope "global"      -> every live connection
  - scope <disaster_id> -> only connections that joined that disaster

Each connection has one sender task draining its queue, so frames reach a client in
the order they were published, and a slow client never blocks the publisher.

There are no await points inside subscribe/unsubscribe/publish, so on a single event
loop each of them is atomic with respect to the others.
"""

import asyncio
from typing import Dict, Set
from datetime import datetime, timezone
from fastapi.websockets import WebSocket
from loguru import logger

from disaster_sync.shared.config import settings
from disaster_sync.shared.events import Event, encode_frame
from disaster_sync.shared.models import ConnectionStats
from disaster_sync.shared.route_utils import log_connection, run_send_loop


class Connection:
    """One accepted WebSocket, its outbound queue and its joined scopes."""

    def __init__(self, client_id: str, websocket: WebSocket, queue_size: int):
        self.client_id = client_id
        self.websocket = websocket
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self.scopes: Set[str] = set()
        self.closed = False
        self.sender: asyncio.Task | None = None
        self.connected_at = datetime.now(timezone.utc)


class SubscriptionRegistry:
    def __init__(
        self,
        heartbeat_interval_s: float = settings.WS_HEARTBEAT_INTERVAL_S,
        queue_size: int = settings.WS_SEND_QUEUE_SIZE,
    ):
        self.heartbeat_interval_s = heartbeat_interval_s
        self.queue_size = queue_size

        self.connections: Dict[str, Connection] = {}
        # Reverse index: disaster_id -> client_ids that joined it
        self.scopes: Dict[str, Set[str]] = {}

        self.events_published = 0
        self.frames_dropped = 0
        self.startup_time = datetime.now(timezone.utc)

    # ==========================
    # CONNECTION LIFECYCLE
    # ==========================
    async def connect(self, client_id: str, websocket: WebSocket) -> Connection:
        await websocket.accept()
        old = self.connections.get(client_id)
        if old is not None:
            self.unsubscribe_all(client_id, reason="replaced")
            await self._close_socket(old)

        conn = Connection(client_id, websocket, self.queue_size)
        self.connections[client_id] = conn
        conn.sender = asyncio.create_task(self._sender(conn))
        log_connection("connect", client_id, {"reason": "accepted"})
        return conn

    async def _sender(self, conn: Connection) -> None:
        try:
            await run_send_loop(
                conn.client_id,
                conn.queue,
                conn.websocket.send_text,
                lambda: conn.closed,
                self.heartbeat_interval_s,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Delivery failures are never surfaced; the connection is simply gone.
            logger.debug(f"client_id={conn.client_id} event=send_failed reason='{e}'")
            self._teardown(conn, reason="send_failed")

    def unsubscribe_all(self, client_id: str, reason: str = "cleanup") -> bool:
        """
        Terminal teardown of a connection: purge its subscriptions, drop pending
        frames and stop its sender. Safe to call from several paths; only the
        first call for a given connection does anything.
        """
        conn = self.connections.get(client_id)
        if conn is None:
            return False
        return self._teardown(conn, reason)

    def release(self, conn: Connection, reason: str = "disconnect") -> bool:
        """Tear down this exact connection (a newer one may already own its id)."""
        return self._teardown(conn, reason)

    def _teardown(self, conn: Connection, reason: str) -> bool:
        if conn.closed:
            return False
        conn.closed = True

        if self.connections.get(conn.client_id) is conn:
            del self.connections[conn.client_id]
        for scope in conn.scopes:
            members = self.scopes.get(scope)
            if members is not None:
                members.discard(conn.client_id)
                if not members:
                    del self.scopes[scope]
        conn.scopes.clear()

        while not conn.queue.empty():
            conn.queue.get_nowait()
        if conn.sender is not None and conn.sender is not asyncio.current_task():
            conn.sender.cancel()

        log_connection("disconnect", conn.client_id, {"reason": reason})
        return True

    # ==========================
    # SUBSCRIPTIONS
    # ==========================
    def subscribe(self, client_id: str, disaster_id: str) -> bool:
        conn = self.connections.get(client_id)
        if conn is None or conn.closed:
            return False
        if disaster_id in conn.scopes:
            return True
        conn.scopes.add(disaster_id)
        self.scopes.setdefault(disaster_id, set()).add(client_id)
        logger.info(f"client_id={client_id} event=join disaster_id={disaster_id}")
        return True

    def unsubscribe(self, client_id: str, disaster_id: str) -> bool:
        conn = self.connections.get(client_id)
        if conn is None or disaster_id not in conn.scopes:
            return False
        conn.scopes.discard(disaster_id)
        members = self.scopes.get(disaster_id)
        if members is not None:
            members.discard(client_id)
            if not members:
                del self.scopes[disaster_id]
        logger.info(f"client_id={client_id} event=leave disaster_id={disaster_id}")
        return True

    def subscriptions_of(self, client_id: str) -> Set[str]:
        conn = self.connections.get(client_id)
        return set(conn.scopes) if conn else set()

    # ==========================
    # CENTRAL FAN-OUT
    # ==========================
    def publish(self, event: Event, exclude: str | None = None) -> int:
        """
        Enqueue `event` for every connection in its scope. Never blocks and never
        raises; returns how many connections it was queued for.
        """
        self.events_published += 1
        exclude = exclude or event.origin
        frame = encode_frame(event)

        if event.is_global:
            targets = list(self.connections.values())
        else:
            targets = [self.connections[cid] for cid in self.scopes.get(event.scope, ()) if cid in self.connections]

        queued = 0
        for conn in targets:
            if conn.closed or conn.client_id == exclude:
                continue
            try:
                conn.queue.put_nowait(frame)
                queued += 1
            except asyncio.QueueFull:
                self.frames_dropped += 1
                logger.warning(f"client_id={conn.client_id} event=dropped reason=queue_full kind={event.kind.value}")
        return queued

    def on_event(self, event: Event) -> None:
        """EventBus listener entry point."""
        self.publish(event)

    async def close_all(self) -> None:
        for client_id in list(self.connections):
            conn = self.connections[client_id]
            self.unsubscribe_all(client_id, reason="shutdown")
            await self._close_socket(conn)

    async def _close_socket(self, conn: Connection) -> None:
        try:
            await conn.websocket.close()
        except Exception as e:
            # Already closed by the peer or mid-handshake; nothing left to release.
            logger.debug(f"client_id={conn.client_id} event=close_failed reason='{e}'")

    # ==========================
    # METRICS
    # ==========================
    def get_stats(self) -> ConnectionStats:
        return ConnectionStats(
            active_connections=len(self.connections),
            subscriptions=sum(len(c.scopes) for c in self.connections.values()),
            events_published=self.events_published,
            frames_dropped=self.frames_dropped,
            uptime_s=(datetime.now(timezone.utc) - self.startup_time).total_seconds(),
            server_time=datetime.now(timezone.utc),
        )
