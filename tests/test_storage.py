"""ChatStore against a temporary sqlite file."""

import sqlite3

import pytest

from ait.conversation import Message, Role
from ait.storage import ChatStore, StorageError, write_chat_log


def rows(store, conversation_id):
    return [(m.role, m.text) for m in store.list_messages(conversation_id)]


def test_conversation_ids_are_never_reused(store):
    first = store.create_conversation("sys")
    second = store.create_conversation("sys")
    store.delete_conversation(second)
    third = store.create_conversation("sys")
    assert first < second < third


def test_append_and_list_in_insertion_order(store):
    cid = store.create_conversation("be brief")
    user = Message.user("hi")
    row_id = store.append_message(cid, user)
    store.append_message(cid, Message.assistant("hello"))

    assert user.row_id == row_id
    assert rows(store, cid) == [(Role.USER, "hi"), (Role.ASSISTANT, "hello")]
    loaded = store.list_messages(cid)
    assert loaded[0].row_id == row_id


def test_error_messages_have_their_own_role(store):
    cid = store.create_conversation("sys")
    store.append_message(cid, Message.error("API Error: down"))
    assert rows(store, cid) == [(Role.ERROR, "API Error: down")]


def test_delete_message_by_row_id_picks_exact_duplicate(store):
    cid = store.create_conversation("sys")
    first = Message.user("same")
    second = Message.user("same")
    store.append_message(cid, first)
    store.append_message(cid, second)

    assert store.delete_message(cid, first)
    remaining = store.list_messages(cid)
    assert [m.row_id for m in remaining] == [second.row_id]


def test_delete_message_by_text_removes_one_row(store):
    cid = store.create_conversation("sys")
    store.append_message(cid, Message.assistant("dup"))
    store.append_message(cid, Message.assistant("dup"))

    assert store.delete_message(cid, Message.assistant("dup"))
    assert rows(store, cid) == [(Role.ASSISTANT, "dup")]
    assert not store.delete_message(cid, Message.user("dup"))


def test_delete_conversation_removes_messages(store):
    keep = store.create_conversation("sys")
    drop = store.create_conversation("sys")
    store.append_message(drop, Message.user("bye"))
    store.append_message(keep, Message.user("stay"))

    store.delete_conversation(drop)

    assert [c.conversation_id for c in store.list_conversations()] == [keep]
    assert store.list_messages(drop) == []
    assert rows(store, keep) == [(Role.USER, "stay")]


def test_list_conversations_newest_first_with_filter(store):
    old = store.create_conversation("sys")
    new = store.create_conversation("sys")
    store.append_message(old, Message.user("talk about sqlite"))
    store.append_message(new, Message.user("talk about rust"))

    assert [c.conversation_id for c in store.list_conversations()] == [new, old]
    assert [c.conversation_id for c in store.list_conversations("sqlite")] == [old]
    record = store.list_conversations()[0]
    assert record.system_prompt == "sys"
    assert record.started_at


def test_orphan_messages_are_not_listed(store):
    """Listing only trusts conversation records."""
    cid = store.create_conversation("sys")
    store.append_message(cid, Message.user("hi"))
    with sqlite3.connect(store.path) as conn:
        conn.execute("DELETE FROM Conversations WHERE conversation_id = ?", (cid,))
    conn.close()
    assert store.list_conversations() == []


def test_unknown_sender_loads_as_error(store):
    cid = store.create_conversation("sys")
    with sqlite3.connect(store.path) as conn:
        conn.execute("PRAGMA ignore_check_constraints = ON")
        conn.execute(
            "INSERT INTO Messages (conversation_id, sender, message_text) VALUES (?, ?, ?)",
            (cid, "robot", "beep"),
        )
    conn.close()
    assert rows(store, cid) == [(Role.ERROR, "Unknown sender type")]


def test_failures_surface_as_storage_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("")
    store = ChatStore(str(blocker / "chats.db"))
    with pytest.raises(StorageError):
        store.create_db()
    with pytest.raises(StorageError):
        store.create_conversation("sys")


def test_write_chat_log(tmp_path):
    path = tmp_path / "latest-chat.log"
    write_chat_log(
        [Message.user("q"), Message.assistant("a"), Message.error("e")], str(path)
    )
    assert path.read_text(encoding="utf-8") == "User: q\nAssistant: a\nError: e\n"
