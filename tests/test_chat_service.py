"""Tests for ChatService: membership, validation and fan-out after store writes."""

import pytest

from groupchat.core.exceptions import BadRequestError, ForbiddenError, InternalError, NotFoundError
from groupchat.core.oauth_validator import AuthContext
from groupchat.models.message import MessageKind
from groupchat.services.presence import Connection

from tests.conftest import GROUP_ID, FakeWebSocket, drain


@pytest.fixture
def listener(presence) -> Connection:
    connection = Connection(FakeWebSocket(), AuthContext(user_id="listener"))
    presence.register(connection)
    presence.subscribe(connection, GROUP_ID)
    return connection


async def test_membership_and_read_receipt_scenario(chat_service, store, groups, creator, outsider):
    with pytest.raises(ForbiddenError):
        await chat_service.send_message(GROUP_ID, outsider, "let me in")

    sent = await chat_service.send_message(GROUP_ID, creator, "hello")
    assert sent.read_by == [creator.user_id]
    assert sent.kind == MessageKind.TEXT

    again = await chat_service.mark_read(GROUP_ID, sent.id, creator)
    assert again.read_by == [creator.user_id]

    groups.add_member(GROUP_ID, "user-3")
    third = AuthContext(user_id="user-3")
    final = await chat_service.mark_read(GROUP_ID, sent.id, third)
    assert set(final.read_by) == {creator.user_id, "user-3"}

    stored = await store.get(sent.id)
    assert set(stored.read_by) == {creator.user_id, "user-3"}


async def test_send_broadcasts_new_message_and_legacy_alias(chat_service, creator, listener):
    sent = await chat_service.send_message(GROUP_ID, creator, "hello", client_message_id="tmp-1")

    events = drain(listener)

    assert [e["event"] for e in events] == ["newMessage", "chat message"]
    assert events[0]["data"]["id"] == sent.id
    assert events[0]["data"]["sender_id"] == creator.user_id
    assert events[0]["data"]["sender_name"] == "Creator"
    assert events[0]["data"]["client_message_id"] == "tmp-1"
    assert events[0]["data"] == events[1]["data"]


async def test_legacy_alias_can_be_disabled(store, oracle, presence, creator, listener):
    from groupchat.services.chat_service import ChatService

    service = ChatService(store, oracle, presence, legacy_chat_event=False)
    await service.send_message(GROUP_ID, creator, "hello")

    assert [e["event"] for e in drain(listener)] == ["newMessage"]


async def test_rejected_send_is_not_broadcast(chat_service, outsider, listener):
    with pytest.raises(ForbiddenError):
        await chat_service.send_message(GROUP_ID, outsider, "nope")

    assert drain(listener) == []


async def test_failed_store_write_is_not_broadcast(chat_service, creator, listener):
    with pytest.raises(NotFoundError):
        await chat_service.send_message(GROUP_ID, creator, "reply", reply_to="missing-parent")

    assert drain(listener) == []


async def test_unknown_group_is_not_found(chat_service, creator):
    with pytest.raises(NotFoundError):
        await chat_service.send_message("no-such-group", creator, "hello")


async def test_group_service_outage_is_internal(chat_service, groups, creator):
    groups.unavailable = True

    with pytest.raises(InternalError):
        await chat_service.send_message(GROUP_ID, creator, "hello")


@pytest.mark.parametrize("kwargs", [
    {"content": ""},
    {"content": "", "kind": MessageKind.IMAGE},
    {"content": "pic", "kind": MessageKind.FILE, "media_type": "application/pdf"},
    {"content": "pic", "kind": MessageKind.IMAGE, "media_url": "https://cdn.example/a.png"},
    {"content": "", "kind": MessageKind.SYSTEM},
    {"content": "Group renamed", "kind": MessageKind.SYSTEM},
])
async def test_invalid_fields_are_rejected(chat_service, creator, kwargs):
    with pytest.raises(BadRequestError):
        await chat_service.send_message(GROUP_ID, creator, **kwargs)


async def test_rejected_system_message_is_not_stored_or_broadcast(chat_service, store, creator, listener):
    drain(listener)

    with pytest.raises(BadRequestError):
        await chat_service.send_message(GROUP_ID, creator, "", kind=MessageKind.SYSTEM)

    messages, total = await store.list(GROUP_ID, page=1, limit=50)
    assert total == 0
    assert drain(listener) == []


async def test_image_message_without_text_is_accepted(chat_service, creator):
    sent = await chat_service.send_message(
        GROUP_ID,
        creator,
        "",
        kind=MessageKind.IMAGE,
        media_url="https://cdn.example/a.png",
        media_type="image/png"
    )

    assert sent.kind == MessageKind.IMAGE
    assert sent.media_type == "image/png"


async def test_edit_broadcasts_message_edited(chat_service, creator, listener):
    sent = await chat_service.send_message(GROUP_ID, creator, "typo")
    drain(listener)

    edited = await chat_service.edit_message(GROUP_ID, sent.id, creator, "fixed")

    assert edited.edited is True
    events = drain(listener)
    assert [e["event"] for e in events] == ["messageEdited"]
    assert events[0]["data"]["content"] == "fixed"


async def test_edit_by_other_member_is_forbidden(chat_service, creator, member, listener):
    sent = await chat_service.send_message(GROUP_ID, creator, "mine")
    drain(listener)

    with pytest.raises(ForbiddenError):
        await chat_service.edit_message(GROUP_ID, sent.id, member, "yours")

    assert drain(listener) == []


async def test_delete_by_other_member_is_forbidden(chat_service, store, creator, member):
    sent = await chat_service.send_message(GROUP_ID, creator, "mine")

    with pytest.raises(ForbiddenError):
        await chat_service.delete_message(GROUP_ID, sent.id, member)

    assert (await store.get(sent.id)).deleted is False


async def test_delete_broadcasts_and_second_delete_is_not_found(chat_service, creator, listener):
    sent = await chat_service.send_message(GROUP_ID, creator, "bye")
    drain(listener)

    deleted = await chat_service.delete_message(GROUP_ID, sent.id, creator)

    assert deleted.deleted is True
    assert drain(listener) == [{
        "event": "messageDeleted",
        "data": {"messageId": sent.id, "deletedBy": creator.user_id, "groupId": GROUP_ID}
    }]

    with pytest.raises(NotFoundError):
        await chat_service.delete_message(GROUP_ID, sent.id, creator)


async def test_read_receipt_broadcasts_to_whole_room(chat_service, presence, creator, member, listener):
    reader = Connection(FakeWebSocket(), member)
    presence.register(reader)
    presence.subscribe(reader, GROUP_ID)

    sent = await chat_service.send_message(GROUP_ID, creator, "read me")
    drain(listener)
    drain(reader)

    await chat_service.mark_read(GROUP_ID, sent.id, member)

    for connection in (listener, reader):
        events = drain(connection)
        assert events[0]["event"] == "messageRead"
        assert events[0]["data"]["userId"] == member.user_id
        assert set(events[0]["data"]["readBy"]) == {creator.user_id, member.user_id}


async def test_typing_excludes_the_typists_connection(chat_service, presence, creator, listener):
    typist = Connection(FakeWebSocket(), creator)
    presence.register(typist)
    presence.subscribe(typist, GROUP_ID)

    delivered = chat_service.typing(GROUP_ID, creator, typist)

    assert delivered == 1
    assert drain(typist) == []
    event = drain(listener)[0]
    assert event["event"] == "user typing"
    assert event["data"]["user"]["id"] == creator.user_id


async def test_reply_to_deleted_parent_renders_tombstone(chat_service, creator, member):
    parent = await chat_service.send_message(GROUP_ID, creator, "parent")
    reply = await chat_service.send_message(GROUP_ID, member, "reply", reply_to=parent.id)
    assert reply.reply_preview.content == "parent"

    await chat_service.delete_message(GROUP_ID, parent.id, creator)
    messages, total = await chat_service.list_messages(GROUP_ID, member)

    assert total == 1
    preview = messages[0].reply_preview
    assert preview.id == parent.id
    assert preview.deleted is True
    assert preview.content is None


async def test_list_requires_membership(chat_service, outsider):
    with pytest.raises(ForbiddenError):
        await chat_service.list_messages(GROUP_ID, outsider)
