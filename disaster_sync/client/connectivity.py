"""
MODULE OVERVIEW:
The connectivity fallback layer: which server does this dashboard talk to?

WHAT IS HAPPENING HERE:
There are two candidate endpoints, a primary (the deployed server) and a local
fallback. One `ConnectivityManager` owns the choice and is handed to everything
that needs a URL: the REST helpers and the persistent WebSocket connection.

  UNRESOLVED --primary ok--> USING_PRIMARY
  UNRESOLVED / USING_PRIMARY --primary fails, fallback ok--> USING_FALLBACK

USING_FALLBACK is a latch: for the rest of the session every call goes to the
fallback and the primary is never retried. A request that fails on both
endpoints raises one `ServerUnavailableError`; there is no retry loop here.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal
import httpx
from loguru import logger

from disaster_sync.shared.client_utils import to_ws_url
from disaster_sync.shared.config import settings
from disaster_sync.shared.errors import ServerUnavailableError

# Network errors, non-2xx (via raise_for_status) and bodies that are not JSON
REQUEST_ERRORS = (httpx.HTTPError, ValueError)


class LinkState(str, Enum):
    UNRESOLVED = "unresolved"
    USING_PRIMARY = "using_primary"
    USING_FALLBACK = "using_fallback"


@dataclass
class EndpointState:
    active: Literal["primary", "fallback"] | None = None
    attempts: int = 0


class ConnectivityManager:
    def __init__(
        self,
        primary_url: str = settings.PRIMARY_API_URL,
        fallback_url: str = settings.FALLBACK_API_URL,
        user_id: str = settings.DEFAULT_USER_ID,
        timeout_s: float = settings.REQUEST_TIMEOUT_S,
        notifications=None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.primary_url = primary_url.rstrip("/")
        self.fallback_url = fallback_url.rstrip("/")
        self.notifications = notifications
        self.state = EndpointState()
        self.client = httpx.AsyncClient(
            timeout=timeout_s,
            transport=transport,
            headers={"x-user-id": user_id},
        )

    @property
    def link_state(self) -> LinkState:
        if self.state.active == "fallback":
            return LinkState.USING_FALLBACK
        if self.state.active == "primary":
            return LinkState.USING_PRIMARY
        return LinkState.UNRESOLVED

    @property
    def on_fallback(self) -> bool:
        return self.state.active == "fallback"

    @property
    def active_url(self) -> str:
        return self.fallback_url if self.on_fallback else self.primary_url

    def websocket_url(self, client_id: str) -> str:
        return f"{to_ws_url(self.active_url)}?client_id={client_id}"

    def mark_reachable(self) -> None:
        """The active endpoint answered; resolves UNRESOLVED to USING_PRIMARY."""
        if self.state.active is None:
            self.state.active = "primary"
        self.state.attempts = 0

    def switch_to_fallback(self, reason: str) -> bool:
        """Latch onto the fallback. Returns False if already there."""
        if self.on_fallback:
            return False
        self.state.active = "fallback"
        self.state.attempts = 0
        logger.warning(f"endpoint=fallback url={self.fallback_url} event=switched reason='{reason}'")
        if self.notifications is not None:
            self.notifications.notify("Switched to local server", "info", purpose="endpoint")
        return True

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict | None = None,
    ) -> Any:
        if self.on_fallback:
            try:
                return await self._send(self.fallback_url, method, path, json, params)
            except REQUEST_ERRORS as e:
                logger.error(f"endpoint=fallback path={path} event=failed reason='{e}'")
                raise ServerUnavailableError(path, None, e) from e

        primary_error: Exception | None = None
        try:
            result = await self._send(self.primary_url, method, path, json, params)
        except REQUEST_ERRORS as e:
            primary_error = e
            logger.warning(f"Primary API failed ({self.primary_url}{path}): {e}; trying fallback")
        else:
            self.mark_reachable()
            return result

        try:
            result = await self._send(self.fallback_url, method, path, json, params)
        except REQUEST_ERRORS as e:
            logger.error(f"Both APIs failed for {path}: primary='{primary_error}' fallback='{e}'")
            raise ServerUnavailableError(path, primary_error, e) from e

        self.switch_to_fallback(reason=f"{method} {path} failed on primary")
        return result

    async def _send(self, base_url: str, method: str, path: str, json: Any, params: dict | None) -> Any:
        response = await self.client.request(method, f"{base_url}{path}", json=json, params=params)
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def aclose(self) -> None:
        await self.client.aclose()
