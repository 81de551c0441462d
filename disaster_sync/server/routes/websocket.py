"""
MODULE OVERVIEW:
The WebSocket route: one persistent connection per dashboard.

WHAT IS HAPPENING HERE:
Upgrades the HTTP request to a WebSocket, registers it with the subscription
registry, then reads control frames until the client goes away. Outbound frames
are written by the registry's per-connection sender task, never by this loop.
Whatever way the loop ends, the `finally` block tears the connection down; the
registry makes sure that only happens once.
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from loguru import logger
from pydantic import ValidationError

from disaster_sync.shared import events
from disaster_sync.shared.events import EmergencyAlertRequest, JoinDisaster, LeaveDisaster, LocationUpdate
from disaster_sync.shared.route_utils import extract_client_id

router = APIRouter()


def handle_control(message, client_id: str, registry, bus) -> None:
    if isinstance(message, JoinDisaster):
        registry.subscribe(client_id, message.disaster_id)
    elif isinstance(message, LeaveDisaster):
        registry.unsubscribe(client_id, message.disaster_id)
    elif isinstance(message, LocationUpdate):
        bus.publish(events.location_updated(
            message.disaster_id, message.user_id, message.location, origin=client_id,
        ))
    elif isinstance(message, EmergencyAlertRequest):
        bus.publish(events.emergency_alert(
            message.message, message.severity, message.location, disaster_id=message.disaster_id,
        ))
        logger.info(f"Emergency alert broadcast: {message.message}")


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    client_id: str | None = Query(None)
):
    registry = websocket.app.state.registry
    bus = websocket.app.state.bus
    cid = extract_client_id(client_id)
    conn = await registry.connect(cid, websocket)

    try:
        while True:
            text_data = await websocket.receive_text()
            if conn.closed:
                # Replaced by a newer connection with the same client_id
                break
            try:
                message = events.parse_control(text_data)
            except ValidationError as e:
                logger.warning(f"client_id={cid} event=bad_frame reason='{e.errors()[0]['msg']}'")
                continue
            handle_control(message, cid, registry, bus)
    except WebSocketDisconnect:
        pass
    finally:
        registry.release(conn, reason="disconnect")
