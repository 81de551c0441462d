"""
FastAPI dependencies: the acting user and the per-app singletons
(store, bus, registry, feeds) kept on `app.state` by the app factory.
"""
from fastapi import Header, Request
from pydantic import BaseModel
from typing import Literal


class User(BaseModel):
    id: str
    role: Literal["admin", "contributor"]

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# Dummy users; there is no real authentication in front of this service.
USERS = {
    "netrunnerX": User(id="netrunnerX", role="admin"),
    "reliefAdmin": User(id="reliefAdmin", role="admin"),
    "citizen1": User(id="citizen1", role="contributor"),
}
DEFAULT_USER = "netrunnerX"


def get_current_user(x_user_id: str | None = Header(None)) -> User:
    return USERS.get(x_user_id or DEFAULT_USER, USERS[DEFAULT_USER])


def get_store(request: Request):
    return request.app.state.store


def get_bus(request: Request):
    return request.app.state.bus


def get_feeds(request: Request):
    return request.app.state.feeds
