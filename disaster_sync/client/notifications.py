"""
MODULE OVERVIEW:
Transient, user-visible notifications ("toasts") for the dashboard.

WHAT IS HAPPENING HERE:
Every notification gets a unique id and a fixed lifetime (5 seconds by default)
after which it disappears on its own. Notifications that share a `purpose`
(e.g. "reconnecting") replace each other instead of stacking, so a flapping
connection shows one up-to-date toast rather than a growing pile.

The `degraded` flag is different: it is the persistent "offline / polling only"
indicator and stays set until a real-time connection succeeds again.
"""
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, List, Literal
from loguru import logger

from disaster_sync.shared.config import settings
from disaster_sync.shared.models import utcnow

Level = Literal["info", "success", "warning", "error"]

_LOG_LEVELS = {"info": "INFO", "success": "SUCCESS", "warning": "WARNING", "error": "ERROR"}


@dataclass
class Notification:
    message: str
    level: Level
    created_at: float
    expires_at: float
    purpose: str | None = None
    # Wall-clock time the toast was raised; created_at is monotonic and only good for expiry.
    posted_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class NotificationCenter:
    def __init__(
        self,
        lifetime_s: float = settings.NOTIFICATION_LIFETIME_S,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = utcnow,
        history_size: int = 200,
    ):
        self.lifetime_s = lifetime_s
        self._clock = clock
        self._wall_clock = wall_clock
        self._live: List[Notification] = []
        self.history: Deque[Notification] = deque(maxlen=history_size)
        self.degraded = False
        self.degraded_reason: str | None = None

    def notify(self, message: str, level: Level = "info", purpose: str | None = None) -> Notification:
        now = self._clock()
        self._prune(now)
        if purpose is not None:
            self._live = [n for n in self._live if n.purpose != purpose]

        notification = Notification(
            message=message,
            level=level,
            created_at=now,
            expires_at=now + self.lifetime_s,
            purpose=purpose,
            posted_at=self._wall_clock(),
        )
        self._live.append(notification)
        self.history.append(notification)
        logger.log(_LOG_LEVELS[level], f"notification={notification.id} purpose={purpose} message='{message}'")
        return notification

    def dismiss(self, notification_id: str) -> bool:
        before = len(self._live)
        self._live = [n for n in self._live if n.id != notification_id]
        return len(self._live) != before

    def active(self) -> List[Notification]:
        self._prune(self._clock())
        return list(self._live)

    def set_degraded(self, degraded: bool, reason: str | None = None) -> None:
        self.degraded = degraded
        self.degraded_reason = reason if degraded else None

    def sent(self, message: str) -> int:
        """How many notifications with exactly this message were ever raised."""
        return sum(1 for n in self.history if n.message == message)

    def _prune(self, now: float) -> None:
        self._live = [n for n in self._live if n.expires_at > now]
