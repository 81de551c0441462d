import uuid
import asyncio
from typing import Callable, Awaitable
from loguru import logger

from disaster_sync.shared.events import heartbeat_frame


def extract_client_id(client_id: str | None) -> str:
    """
    If the caller provided a client_id, use it.
    If not, generate a short readable one like 'client-a3f2'.
    This prevents anonymous connections from cluttering logs.
    """
    if client_id:
        return client_id
    return f"client-{str(uuid.uuid4())[:4]}"


def log_connection(event: str, client_id: str, extra: dict | None = None) -> None:
    """
    Single structured log entry for a connection lifecycle step.
    Writes: event, client_id, and any extra fields as key=value pairs.
    """
    log_str = f"client_id={client_id} event={event}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.info(log_str)


async def run_send_loop(
    client_id: str,
    queue: asyncio.Queue,
    send_fn: Callable[[str], Awaitable[None]],
    is_closed: Callable[[], bool],
    heartbeat_interval_s: float = 30.0,
) -> None:
    """
    The per-connection server-side dispatch loop.

    It:
      1. Takes the next encoded frame from `queue` (FIFO, so delivery order
         equals publish order for this connection).
      2. If `heartbeat_interval_s` seconds pass with no frame, sends a heartbeat.
      3. Stops as soon as `is_closed()` turns true; nothing is sent afterwards.
    Send failures propagate to the caller, which owns teardown.
    """
    while not is_closed():
        try:
            frame = await asyncio.wait_for(queue.get(), timeout=heartbeat_interval_s)
        except asyncio.TimeoutError:
            frame = heartbeat_frame()
        if is_closed():
            break
        await send_fn(frame)
