from datetime import datetime, timezone


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    The real-time connection calls this once in __init__.
    Keys: events_received, frames_rejected, reconnect_count,
          bytes_received, last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "frames_rejected": 0,
        "reconnect_count": 0,
        "bytes_received": 0,
        "last_event_at": None,
        "connected_at": None,
    }


def record_frame(stats: dict, raw: str | bytes, accepted: bool) -> None:
    stats["bytes_received"] += len(raw)
    if accepted:
        stats["events_received"] += 1
        stats["last_event_at"] = datetime.now(timezone.utc).isoformat()
    else:
        stats["frames_rejected"] += 1


def to_ws_url(base_url: str) -> str:
    """http(s)://host -> ws(s)://host/ws"""
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws"
