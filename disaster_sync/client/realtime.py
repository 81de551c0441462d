"""
MODULE OVERVIEW:
The dashboard's persistent WebSocket connection.

WHAT IS HAPPENING HERE:
We use the `websockets` library against whatever endpoint the ConnectivityManager
says is active. The policy, in order:

  1. Connect. A failed attempt is retried a small fixed number of times
     (RECONNECT_ATTEMPTS) with a fixed delay (RECONNECT_DELAY_S).
  2. In parallel, a fallback timer (FALLBACK_TIMEOUT_S) runs. If it fires before
     any connection succeeded and we are still on the primary, we latch to the
     fallback and start over there. A successful connection cancels the timer.
  3. If the attempts on the fallback run out too, we give up on real time and
     flag the dashboard as degraded. REST polling keeps it usable.

Timers are generation-keyed (see `timers.py`): every transition invalidates the
callbacks scheduled under the previous state.
Nothing here raises into the UI; failures become notifications.
"""

import asyncio
import functools
import json
from typing import Any, Awaitable, Callable
import websockets
from loguru import logger

from disaster_sync.client.connectivity import ConnectivityManager
from disaster_sync.client.notifications import NotificationCenter
from disaster_sync.client.timers import GenerationScheduler
from disaster_sync.shared.client_utils import make_client_stats, record_frame
from disaster_sync.shared.config import settings
from disaster_sync.shared.errors import EventDecodeError
from disaster_sync.shared.events import Event, decode_frame
from disaster_sync.shared.models import utcnow

CONNECTION_ERRORS = (OSError, websockets.WebSocketException, asyncio.TimeoutError)

default_connect = functools.partial(websockets.connect, ping_interval=20, open_timeout=10)


class RealtimeConnection:
    protocol_name: str = "websocket"

    def __init__(
        self,
        client_id: str,
        connectivity: ConnectivityManager,
        notifications: NotificationCenter,
        on_event: Callable[[Event], None],
        on_connected: Callable[[], Awaitable[None]] | None = None,
        reconnect_attempts: int = settings.RECONNECT_ATTEMPTS,
        reconnect_delay_s: float = settings.RECONNECT_DELAY_S,
        fallback_timeout_s: float = settings.FALLBACK_TIMEOUT_S,
        connect_fn: Callable[[str], Any] = default_connect,
    ):
        self.client_id = client_id
        self.connectivity = connectivity
        self.notifications = notifications
        self.on_event = on_event
        self.on_connected = on_connected
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay_s = reconnect_delay_s
        self.fallback_timeout_s = fallback_timeout_s
        self._connect_fn = connect_fn

        self.stats = make_client_stats()
        self.scheduler = GenerationScheduler()
        self.connected = False
        self.degraded = False
        self._ws = None
        self._run_task: asyncio.Task | None = None
        self._closed = True

    @property
    def status(self) -> str:
        if self._closed:
            return "CLOSED"
        if self.connected:
            return "CONNECTED"
        if self.degraded:
            return "DEGRADED"
        return "CONNECTING"

    # ==========================
    # LIFECYCLE
    # ==========================
    async def start(self) -> None:
        self._closed = False
        self._open()

    async def close(self) -> None:
        self._closed = True
        self.scheduler.advance()
        task, self._run_task = self._run_task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        ws, self._ws = self._ws, None
        self.connected = False
        if ws is not None:
            try:
                await ws.close()
            except CONNECTION_ERRORS as e:
                logger.debug(f"client_id={self.client_id} event=close_failed reason='{e}'")

    def _open(self) -> None:
        """(Re)start the connect loop against the currently active endpoint."""
        self.scheduler.advance()
        old = self._run_task
        if old is not None and not old.done() and old is not asyncio.current_task():
            old.cancel()
        self._run_task = asyncio.create_task(self._run())
        if not self.connectivity.on_fallback:
            self.scheduler.schedule(self.fallback_timeout_s, self._on_fallback_timeout)

    # ==========================
    # CONNECT LOOP
    # ==========================
    async def _run(self) -> None:
        failures = 0
        while not self._closed:
            url = self.connectivity.websocket_url(self.client_id)
            was_connected = False
            try:
                async with self._connect_fn(url) as ws:
                    was_connected = True
                    await self._on_open(ws)
                    await self._read_loop(ws)
            except CONNECTION_ERRORS as e:
                logger.warning(
                    f"Protocol {self.protocol_name} Client {self.client_id} "
                    f"url={url} Attempt {failures + 1} Error {e}"
                )
            finally:
                if was_connected:
                    self._on_close()

            if self._closed:
                return
            if was_connected:
                failures = 0
            else:
                failures += 1
                self.connectivity.state.attempts += 1
            if failures > self.reconnect_attempts:
                self._on_exhausted()
                return

            self.stats["reconnect_count"] += 1
            self.notifications.notify(
                f"Reconnecting... (attempt {failures + 1})", "info", purpose="reconnecting"
            )
            await asyncio.sleep(self.reconnect_delay_s)

    async def _read_loop(self, ws) -> None:
        async for raw in ws:
            self._handle_frame(raw)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = decode_frame(raw)
        except EventDecodeError as e:
            record_frame(self.stats, raw, accepted=False)
            logger.warning(f"client_id={self.client_id} event=bad_frame reason='{e}'")
            return
        if event is None:
            self.stats["bytes_received"] += len(raw)
            return
        record_frame(self.stats, raw, accepted=True)
        try:
            self.on_event(event)
        except Exception:
            logger.exception(f"client_id={self.client_id} event=handler_failed kind={event.kind.value}")

    # ==========================
    # TRANSITIONS
    # ==========================
    async def _on_open(self, ws) -> None:
        self._ws = ws
        self.connected = True
        self.degraded = False
        # Cancels the pending fallback switch
        self.scheduler.advance()
        self.connectivity.mark_reachable()
        self.notifications.set_degraded(False)
        self.stats["connected_at"] = utcnow().isoformat()
        logger.info(f"client_id={self.client_id} event=connect url={self.connectivity.active_url}")
        self.notifications.notify("Connected to real-time updates", "success", purpose="connection")
        if self.on_connected is not None:
            await self.on_connected()

    def _on_close(self) -> None:
        self._ws = None
        self.connected = False
        if not self._closed:
            logger.info(f"client_id={self.client_id} event=disconnect")
            self.notifications.notify("Disconnected from real-time updates", "warning", purpose="connection")

    async def _on_fallback_timeout(self) -> None:
        if self.connected or self._closed:
            return
        if self.connectivity.switch_to_fallback(reason=f"no socket within {self.fallback_timeout_s}s"):
            self._open()

    def _on_exhausted(self) -> None:
        if not self.connectivity.on_fallback:
            if self.scheduler.pending:
                # The fallback timer will move us over when it fires.
                return
            if self.connectivity.switch_to_fallback(reason="reconnect attempts exhausted"):
                self._open()
                return
        self.degraded = True
        self.notifications.set_degraded(True, "real-time server unreachable")
        self.notifications.notify(
            "Real-time features unavailable - using polling mode", "warning", purpose="connection"
        )

    # ==========================
    # OUTBOUND
    # ==========================
    async def send(self, action: str, **data: Any) -> bool:
        ws = self._ws
        if ws is None or not self.connected:
            logger.debug(f"client_id={self.client_id} event=send_skipped action={action} reason=not_connected")
            return False
        try:
            await ws.send(json.dumps({"action": action, **data}))
        except CONNECTION_ERRORS as e:
            logger.warning(f"client_id={self.client_id} event=send_failed action={action} reason='{e}'")
            return False
        return True
