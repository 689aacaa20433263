"""
Dependency injection for FastAPI routes.

Long-lived services (message store, group service, presence registry) are
created by the application lifespan and kept on ``app.state``; the
providers below hand them to routes. Tests replace them with
``app.dependency_overrides``:

    app.dependency_overrides[get_message_store] = lambda: InMemoryMessageStore()
"""

from fastapi import Depends
from starlette.requests import HTTPConnection

from groupchat.services.chat_service import ChatService
from groupchat.services.gateway import RealtimeGateway
from groupchat.services.group_service import GroupService
from groupchat.services.membership import MembershipOracle
from groupchat.services.message_store import MessageStore
from groupchat.services.presence import PresenceRegistry


def get_message_store(connection: HTTPConnection) -> MessageStore:
    return connection.app.state.message_store


def get_group_service(connection: HTTPConnection) -> GroupService:
    return connection.app.state.group_service


def get_presence_registry(connection: HTTPConnection) -> PresenceRegistry:
    return connection.app.state.presence


def get_membership_oracle(
    group_service: GroupService = Depends(get_group_service)
) -> MembershipOracle:
    return MembershipOracle(group_service)


def get_chat_service(
    store: MessageStore = Depends(get_message_store),
    oracle: MembershipOracle = Depends(get_membership_oracle),
    presence: PresenceRegistry = Depends(get_presence_registry)
) -> ChatService:
    return ChatService(store, oracle, presence)


def get_gateway(
    chat_service: ChatService = Depends(get_chat_service),
    presence: PresenceRegistry = Depends(get_presence_registry),
    oracle: MembershipOracle = Depends(get_membership_oracle)
) -> RealtimeGateway:
    return RealtimeGateway(chat_service, presence, oracle)
