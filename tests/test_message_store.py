"""Tests for the in-memory MessageStore."""

import asyncio
from datetime import timedelta

import pytest

from groupchat.core.exceptions import ForbiddenError, NotFoundError
from groupchat.models.message import MessageKind

GROUP = "group-1"


async def test_append_initializes_read_by_with_sender(store):
    message = await store.append(GROUP, "alice", "hello")

    assert message.read_by == ["alice"]
    assert message.kind == MessageKind.TEXT
    assert message.deleted is False
    assert message.edited is False


async def test_append_is_visible_to_next_list_exactly_once(store):
    first = await store.append(GROUP, "alice", "one")
    second = await store.append(GROUP, "bob", "two")

    messages, total = await store.list(GROUP, page=1, limit=50)

    assert total == 2
    assert [m.id for m in messages] == [first.id, second.id]


async def test_list_is_scoped_to_group(store):
    await store.append(GROUP, "alice", "here")
    await store.append("other-group", "alice", "there")

    messages, total = await store.list(GROUP, page=1, limit=50)

    assert total == 1
    assert messages[0].content == "here"


async def test_reply_to_missing_parent_is_not_found(store):
    with pytest.raises(NotFoundError):
        await store.append(GROUP, "alice", "reply", reply_to="nope")


async def test_reply_to_parent_in_other_group_is_not_found(store):
    parent = await store.append("other-group", "alice", "parent")

    with pytest.raises(NotFoundError):
        await store.append(GROUP, "alice", "reply", reply_to=parent.id)


async def test_reply_to_deleted_parent_is_not_found(store):
    parent = await store.append(GROUP, "alice", "parent")
    await store.soft_delete(parent.id, "alice")

    with pytest.raises(NotFoundError):
        await store.append(GROUP, "bob", "reply", reply_to=parent.id)


async def test_concurrent_mark_read_loses_no_updates(store):
    """
    Set semantics under gathered receipts.

    The in-memory store has no await inside mark_read, so this cannot
    interleave; the interleaving case runs in test_mongo_message_store.py
    when MONGODB_TEST_URL is set.
    """
    message = await store.append(GROUP, "alice", "read me")
    readers = [f"user-{i % 25}" for i in range(100)]

    await asyncio.gather(*[store.mark_read(message.id, reader) for reader in readers])

    stored = await store.get(message.id)
    assert set(stored.read_by) == {"alice", *readers}
    assert len(stored.read_by) == len(set(stored.read_by))


async def test_timestamps_are_utc_milliseconds(store):
    message = await store.append(GROUP, "alice", "tick")

    assert message.created_at.tzinfo is not None
    assert message.created_at.utcoffset() == timedelta(0)
    assert message.created_at.microsecond % 1000 == 0


async def test_mark_read_twice_is_noop(store):
    message = await store.append(GROUP, "alice", "hi")

    await store.mark_read(message.id, "alice")
    result = await store.mark_read(message.id, "alice")

    assert result.read_by == ["alice"]


async def test_mark_read_does_not_touch_updated_at(store):
    message = await store.append(GROUP, "alice", "hi")

    result = await store.mark_read(message.id, "bob")

    assert result.updated_at == message.updated_at


async def test_mark_read_on_deleted_message_is_not_found(store):
    message = await store.append(GROUP, "alice", "hi")
    await store.soft_delete(message.id, "alice")

    with pytest.raises(NotFoundError):
        await store.mark_read(message.id, "bob")


async def test_soft_delete_twice_is_not_found(store):
    message = await store.append(GROUP, "alice", "bye")

    deleted = await store.soft_delete(message.id, "alice")
    assert deleted.deleted is True
    assert deleted.deleted_by == "alice"

    with pytest.raises(NotFoundError):
        await store.soft_delete(message.id, "alice")


async def test_deleted_message_never_listed(store):
    kept = await store.append(GROUP, "alice", "keep")
    gone = await store.append(GROUP, "alice", "drop")
    await store.soft_delete(gone.id, "alice")

    messages, total = await store.list(GROUP, page=1, limit=50)

    assert total == 1
    assert [m.id for m in messages] == [kept.id]


async def test_deleted_message_still_readable_by_id(store):
    message = await store.append(GROUP, "alice", "drop")
    await store.soft_delete(message.id, "alice")

    fetched = await store.get(message.id)

    assert fetched.deleted is True


async def test_edit_updates_content_and_flags(store):
    message = await store.append(GROUP, "alice", "typo")

    await store.edit(message.id, "alice", "fixed")
    fetched = await store.get(message.id)

    assert fetched.content == "fixed"
    assert fetched.edited is True
    assert fetched.edited_at is not None
    assert fetched.updated_at >= message.updated_at


async def test_edit_by_other_user_is_forbidden(store):
    message = await store.append(GROUP, "alice", "mine")

    with pytest.raises(ForbiddenError):
        await store.edit(message.id, "bob", "hijacked")

    assert (await store.get(message.id)).content == "mine"


async def test_edit_missing_message_is_not_found(store):
    with pytest.raises(NotFoundError):
        await store.edit("missing", "alice", "text")


async def test_edit_deleted_message_is_not_found(store):
    message = await store.append(GROUP, "alice", "gone")
    await store.soft_delete(message.id, "alice")

    with pytest.raises(NotFoundError):
        await store.edit(message.id, "alice", "back")


async def test_edit_outside_group_is_not_found(store):
    message = await store.append(GROUP, "alice", "text")

    with pytest.raises(NotFoundError):
        await store.edit(message.id, "alice", "new", group_id="other-group")


async def test_pagination_over_120_messages(store):
    for i in range(120):
        await store.append(GROUP, "alice", f"message {i}")

    page_one, total = await store.list(GROUP, page=1, limit=50)
    page_three, _ = await store.list(GROUP, page=3, limit=50)

    assert total == 120
    assert len(page_one) == 50
    assert [m.content for m in page_one] == [f"message {i}" for i in range(50)]
    assert [m.created_at for m in page_one] == sorted(m.created_at for m in page_one)
    assert len(page_three) == 20
    assert page_three[-1].content == "message 119"


async def test_returned_messages_are_copies(store):
    message = await store.append(GROUP, "alice", "original")
    message.content = "mutated"
    message.read_by.append("mallory")

    fetched = await store.get(message.id)

    assert fetched.content == "original"
    assert fetched.read_by == ["alice"]


async def test_get_many_skips_unknown_ids(store):
    first = await store.append(GROUP, "alice", "one")

    found = await store.get_many([first.id, "unknown"])

    assert list(found) == [first.id]
