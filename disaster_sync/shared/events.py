"""
MODULE OVERVIEW:
The event vocabulary of the real-time layer and its wire codec.

WHAT IS HAPPENING HERE:
`EventKind` is a closed set. Every mutation handler on the server builds its event
through one of the factory functions below, so scope and payload shape are decided
in exactly one place. The payload of an event *is* the `data` object that goes on
the wire; the wire name is derived from the kind (three kinds share
`disaster_updated` and are told apart by `data.action`).

Client -> server control frames are a Pydantic discriminated union on `action`.
"""
import json
from enum import Enum
from typing import Annotated, Any, Literal, Union
from datetime import datetime
from pydantic import BaseModel, Field, TypeAdapter

from disaster_sync.shared.errors import EventDecodeError
from disaster_sync.shared.models import new_id, utcnow

GLOBAL_SCOPE = "global"
HEARTBEAT = "heartbeat"


class EventKind(str, Enum):
    DISASTER_CREATED = "disaster_created"
    DISASTER_UPDATED = "disaster_updated"
    DISASTER_DELETED = "disaster_deleted"
    REPORT_CREATED = "report_created"
    RESOURCE_CREATED = "resource_created"
    SOCIAL_DATA_UPDATED = "social_data_updated"
    OFFICIAL_DATA_UPDATED = "official_data_updated"
    EMERGENCY_ALERT = "emergency_alert"
    LOCATION_UPDATED = "location_updated"


WIRE_NAMES: dict[EventKind, str] = {
    EventKind.DISASTER_CREATED: "disaster_updated",
    EventKind.DISASTER_UPDATED: "disaster_updated",
    EventKind.DISASTER_DELETED: "disaster_updated",
    EventKind.REPORT_CREATED: "report_created",
    EventKind.RESOURCE_CREATED: "resource_created",
    EventKind.SOCIAL_DATA_UPDATED: "social_media_updated",
    EventKind.OFFICIAL_DATA_UPDATED: "official_updates_updated",
    EventKind.EMERGENCY_ALERT: "emergency_alert",
    EventKind.LOCATION_UPDATED: "user_location_update",
}

_DISASTER_ACTIONS = {
    "create": EventKind.DISASTER_CREATED,
    "update": EventKind.DISASTER_UPDATED,
    "delete": EventKind.DISASTER_DELETED,
}
_KINDS_BY_WIRE_NAME = {
    name: kind for kind, name in WIRE_NAMES.items() if name != "disaster_updated"
}


class Event(BaseModel):
    event_id: str = Field(default_factory=new_id)
    kind: EventKind
    scope: str = GLOBAL_SCOPE
    payload: dict[str, Any]
    timestamp: datetime = Field(default_factory=utcnow)
    # Connection that produced the event; it is not echoed back to it.
    origin: str | None = None

    @property
    def is_global(self) -> bool:
        return self.scope == GLOBAL_SCOPE

    @property
    def wire_name(self) -> str:
        return WIRE_NAMES[self.kind]


# ==========================
# FACTORIES
# ==========================
def disaster_created(disaster: dict[str, Any]) -> Event:
    return Event(kind=EventKind.DISASTER_CREATED, payload={"action": "create", "disaster": disaster})


def disaster_updated(disaster: dict[str, Any]) -> Event:
    return Event(kind=EventKind.DISASTER_UPDATED, payload={"action": "update", "disaster": disaster})


def disaster_deleted(disaster_id: str) -> Event:
    return Event(kind=EventKind.DISASTER_DELETED, payload={"action": "delete", "id": disaster_id})


def report_created(disaster_id: str, report: dict[str, Any]) -> Event:
    return Event(
        kind=EventKind.REPORT_CREATED,
        scope=disaster_id,
        payload={"disaster_id": disaster_id, "report": report},
    )


def resource_created(disaster_id: str, resource: dict[str, Any]) -> Event:
    return Event(
        kind=EventKind.RESOURCE_CREATED,
        scope=disaster_id,
        payload={"disaster_id": disaster_id, "resource": resource},
    )


def social_data_updated(disaster_id: str, data: list[dict[str, Any]]) -> Event:
    return Event(
        kind=EventKind.SOCIAL_DATA_UPDATED,
        scope=disaster_id,
        payload={"disaster_id": disaster_id, "data": data},
    )


def official_data_updated(disaster_id: str, data: list[dict[str, Any]]) -> Event:
    return Event(
        kind=EventKind.OFFICIAL_DATA_UPDATED,
        scope=disaster_id,
        payload={"disaster_id": disaster_id, "data": data},
    )


def emergency_alert(
    message: str,
    severity: str | None = None,
    location: Any = None,
    disaster_id: str | None = None,
) -> Event:
    event = Event(
        kind=EventKind.EMERGENCY_ALERT,
        scope=disaster_id or GLOBAL_SCOPE,
        payload={"message": message, "severity": severity, "location": location},
    )
    event.payload["timestamp"] = event.timestamp.isoformat()
    return event


def location_updated(disaster_id: str, user_id: str, location: Any, origin: str | None = None) -> Event:
    event = Event(
        kind=EventKind.LOCATION_UPDATED,
        scope=disaster_id,
        origin=origin,
        payload={"user_id": user_id, "location": location},
    )
    event.payload["timestamp"] = event.timestamp.isoformat()
    return event


# ==========================
# WIRE CODEC
# ==========================
def encode_frame(event: Event) -> str:
    return json.dumps({
        "id": event.event_id,
        "event": event.wire_name,
        "scope": event.scope,
        "timestamp": event.timestamp.isoformat(),
        "data": event.payload,
    })


def heartbeat_frame() -> str:
    return json.dumps({"event": HEARTBEAT, "timestamp": utcnow().isoformat()})


def decode_frame(text: str | bytes) -> Event | None:
    """Parse a server frame. Returns None for heartbeats."""
    try:
        frame = json.loads(text)
    except json.JSONDecodeError as e:
        raise EventDecodeError(f"frame is not JSON: {e}") from e
    if not isinstance(frame, dict):
        raise EventDecodeError("frame is not an object")

    name = frame.get("event")
    if name == HEARTBEAT:
        return None
    data = frame.get("data")
    if not isinstance(data, dict):
        raise EventDecodeError(f"frame {name!r} has no data object")

    if name == "disaster_updated":
        kind = _DISASTER_ACTIONS.get(data.get("action"))
    else:
        kind = _KINDS_BY_WIRE_NAME.get(name)
    if kind is None:
        raise EventDecodeError(f"unknown event {name!r}")

    # Older servers omit the scope; scoped kinds always carry disaster_id.
    scope = frame.get("scope") or data.get("disaster_id") or GLOBAL_SCOPE
    fields: dict[str, Any] = {"kind": kind, "scope": scope, "payload": data}
    if frame.get("id"):
        fields["event_id"] = frame["id"]
    if frame.get("timestamp"):
        fields["timestamp"] = frame["timestamp"]
    return Event(**fields)


# ==========================
# CONTROL FRAMES (client -> server)
# ==========================
class JoinDisaster(BaseModel):
    action: Literal["join_disaster"]
    disaster_id: str


class LeaveDisaster(BaseModel):
    action: Literal["leave_disaster"]
    disaster_id: str


class LocationUpdate(BaseModel):
    action: Literal["location_update"]
    disaster_id: str
    user_id: str
    location: Any


class EmergencyAlertRequest(BaseModel):
    action: Literal["emergency_alert"]
    disaster_id: str | None = None
    message: str
    severity: str = "high"
    location: Any = None


ControlMessage = Annotated[
    Union[JoinDisaster, LeaveDisaster, LocationUpdate, EmergencyAlertRequest],
    Field(discriminator="action"),
]
control_adapter: TypeAdapter[ControlMessage] = TypeAdapter(ControlMessage)


def parse_control(text: str) -> ControlMessage:
    """Raises pydantic.ValidationError for anything that is not a known control frame."""
    return control_adapter.validate_json(text)
