"""Tests for council/store.py."""

import sqlite3
from pathlib import Path

import pytest

from council.store import RoomStore, conversation_id_from_url


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://gemini.google.com/app/abc123DEF", "abc123DEF"),
        ("https://gemini.google.com/u/2/app/f00ba4", "f00ba4"),
        ("https://gemini.google.com/app", None),
        ("about:blank", None),
    ],
)
def test_conversation_id_from_url(url, expected):
    assert conversation_id_from_url(url) == expected


def test_create_room_with_and_without_name(room_store):
    named = room_store.create_room("Design review")
    assert named["name"] == "Design review"
    unnamed = room_store.create_room()
    assert unnamed["name"].startswith("Room ")
    assert named["id"] != unnamed["id"]


def test_get_room_unknown(room_store):
    assert room_store.get_room("missing") is None
    assert room_store.get_room_with_details("missing") is None


def test_messages_in_insertion_order(room_store):
    room = room_store.create_room()
    first = room_store.save_message(room["id"], "user", "hello", target="0")
    second = room_store.save_message(room["id"], "0", "hi back")
    assert second > first

    messages = room_store.get_messages(room["id"])
    assert [(m["sender"], m["content"], m["target"]) for m in messages] == [
        ("user", "hello", "0"),
        ("0", "hi back", None),
    ]


def test_get_messages_limit(room_store):
    room = room_store.create_room()
    for i in range(5):
        room_store.save_message(room["id"], "user", f"m{i}")
    assert [m["content"] for m in room_store.get_messages(room["id"], limit=2)] == ["m0", "m1"]


def test_get_rooms_includes_message_count(room_store):
    room = room_store.create_room("counted")
    room_store.save_message(room["id"], "user", "one")
    room_store.save_message(room["id"], "1", "two")
    rooms = {r["id"]: r for r in room_store.get_rooms()}
    assert rooms[room["id"]]["message_count"] == 2


def test_agent_conversation_upsert(room_store):
    room = room_store.create_room()
    room_store.save_agent_conversation(room["id"], "1", "https://gemini.google.com/u/1/app/first1")
    room_store.save_agent_conversation(room["id"], "1", "https://gemini.google.com/u/1/app/second2")

    convs = room_store.get_agent_conversations(room["id"])
    assert len(convs) == 1
    assert convs[0]["gemini_conv_id"] == "second2"
    assert convs[0]["gemini_url"] == "https://gemini.google.com/u/1/app/second2"


def test_room_details(room_store):
    room = room_store.create_room("details")
    room_store.save_message(room["id"], "user", "q")
    room_store.save_agent_conversation(room["id"], "0", "https://gemini.google.com/app/zzz9")
    details = room_store.get_room_with_details(room["id"])
    assert details["name"] == "details"
    assert len(details["messages"]) == 1
    assert details["agents"][0]["agent_id"] == "0"


def test_delete_room_cascades(room_store):
    room = room_store.create_room()
    room_store.save_message(room["id"], "user", "q")
    room_store.save_agent_conversation(room["id"], "0", "https://gemini.google.com/app/zzz9")

    assert room_store.delete_room(room["id"]) is True
    assert room_store.get_messages(room["id"]) == []
    assert room_store.get_agent_conversations(room["id"]) == []
    assert room_store.delete_room(room["id"]) is False


def test_message_for_unknown_room_rejected(room_store):
    with pytest.raises(sqlite3.IntegrityError):
        room_store.save_message("no-such-room", "user", "orphan")


def test_data_survives_reopen(tmp_path: Path):
    db_path = tmp_path / "nested" / "council.db"
    store = RoomStore(db_path)
    room = store.create_room("persistent")
    store.save_message(room["id"], "user", "remember me")
    store.close()

    reopened = RoomStore(db_path)
    try:
        assert reopened.get_messages(room["id"])[0]["content"] == "remember me"
    finally:
        reopened.close()


def test_in_memory_store():
    store = RoomStore(Path(":memory:"))
    try:
        room = store.create_room()
        assert store.get_room(room["id"]) is not None
    finally:
        store.close()
