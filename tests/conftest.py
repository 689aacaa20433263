"""
Pytest configuration and shared fixtures for the group chat core tests.

This file provides reusable test fixtures including:
- In-memory message store and presence registry
- A static Group collaborator (no HTTP)
- JWT helpers for authenticated requests
- The FastAPI app wired to the fixtures via dependency overrides
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

os.environ.setdefault("MESSAGE_STORE_BACKEND", "memory")

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from groupchat.config import settings
from groupchat.core.oauth_validator import AuthContext
from groupchat.core.rate_limit import limiter
from groupchat.dependencies import get_group_service, get_message_store, get_presence_registry
from groupchat.services.chat_service import ChatService
from groupchat.services.group_service import GroupDetails
from groupchat.services.membership import MembershipOracle
from groupchat.services.message_store import InMemoryMessageStore
from groupchat.services.presence import Connection, PresenceRegistry

GROUP_ID = "group-1"
CREATOR_ID = "user-1"
OUTSIDER_ID = "user-2"
MEMBER_ID = "user-3"


class StaticGroupService:
    """Group collaborator stand-in backed by a dict."""

    def __init__(self, groups: Iterable[GroupDetails] = ()):
        self.groups: Dict[str, GroupDetails] = {g.id: g for g in groups}
        self.unavailable = False

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get_group(self, group_id: str) -> Optional[GroupDetails]:
        if self.unavailable:
            raise asyncio.TimeoutError()
        return self.groups.get(group_id)

    def add_member(self, group_id: str, user_id: str) -> None:
        self.groups[group_id].member_ids.append(user_id)


class FakeWebSocket:
    """Records what a Connection writes."""

    def __init__(self):
        self.sent: List[dict] = []
        self.close_code: Optional[int] = None

    async def send_json(self, data: dict) -> None:
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code


def make_token(user_id: str, name: str = None, token_type: str = "access", expires_in: int = 3600) -> str:
    payload = {
        "sub": user_id,
        "type": token_type,
        "role": "user",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def drain(connection: Connection) -> List[dict]:
    """Pop every event queued for a connection."""
    events = []
    while not connection._queue.empty():
        events.append(connection._queue.get_nowait())
    return events


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


@pytest.fixture
def groups() -> StaticGroupService:
    return StaticGroupService([
        GroupDetails(id=GROUP_ID, name="Test Group", creator_id=CREATOR_ID, member_ids=[CREATOR_ID])
    ])


@pytest.fixture
def presence() -> PresenceRegistry:
    return PresenceRegistry()


@pytest.fixture
def oracle(groups) -> MembershipOracle:
    return MembershipOracle(groups)


@pytest.fixture
def chat_service(store, oracle, presence) -> ChatService:
    return ChatService(store, oracle, presence, legacy_chat_event=True)


@pytest.fixture
def creator() -> AuthContext:
    return AuthContext(user_id=CREATOR_ID, name="Creator")


@pytest.fixture
def member(groups) -> AuthContext:
    groups.add_member(GROUP_ID, MEMBER_ID)
    return AuthContext(user_id=MEMBER_ID, name="Member")


@pytest.fixture
def outsider() -> AuthContext:
    return AuthContext(user_id=OUTSIDER_ID, name="Outsider")


@pytest.fixture
def app(store, groups, presence):
    """The application with its long-lived services replaced by fixtures."""
    from groupchat.main import app

    app.dependency_overrides[get_message_store] = lambda: store
    app.dependency_overrides[get_group_service] = lambda: groups
    app.dependency_overrides[get_presence_registry] = lambda: presence
    limiter.enabled = False

    yield app

    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
async def test_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
