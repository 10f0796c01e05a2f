"""Tests for the chat session that sits between a transport and the envelope protocol."""

from __future__ import annotations

import logging
import os

import pytest

from ciphercord import crypto
from ciphercord.messages import ReceivedMessage
from client.net import DEFAULT_FILE_TYPE, ChatSession, save_attachment
from relay.transport import MemoryRelay

CHANNEL = "ciphercord"


def _session(relay, author: str, passphrase: str = "hunter2", room: str = "lobby") -> ChatSession:
    return ChatSession(relay, CHANNEL, room, author, passphrase)


def test_text_reaches_room_members(memory_relay: MemoryRelay) -> None:
    raw = memory_relay.bodies(CHANNEL)
    inbox = _session(memory_relay, "bob").incoming()
    token = _session(memory_relay, "alice").send_text("hello")
    msg = next(inbox)
    assert (msg.author, msg.content) == ("alice", "hello")
    assert next(raw) == token


def test_foreign_passphrase_is_skipped_quietly(memory_relay: MemoryRelay, caplog) -> None:
    """Other groups on the shared channel are filtered out without warnings."""
    inbox = _session(memory_relay, "bob").incoming()
    with caplog.at_level(logging.DEBUG, logger="client.net"):
        _session(memory_relay, "mallory", passphrase="other").send_text("not for you")
        _session(memory_relay, "alice").send_text("hi")
        assert next(inbox).content == "hi"
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


def test_other_rooms_are_skipped(memory_relay: MemoryRelay) -> None:
    inbox = _session(memory_relay, "bob").incoming()
    _session(memory_relay, "alice", room="ops").send_text("wrong room")
    _session(memory_relay, "alice").send_text("right room")
    assert next(inbox).content == "right room"


def test_unreadable_bodies_are_logged_and_skipped(memory_relay: MemoryRelay, caplog) -> None:
    inbox = _session(memory_relay, "bob").incoming()
    with caplog.at_level(logging.WARNING, logger="client.net"):
        memory_relay.send(CHANNEL, "this is not an envelope")
        _session(memory_relay, "alice").send_text("still works")
        assert next(inbox).content == "still works"
    assert any("DecodeError" in r.getMessage() for r in caplog.records)


def test_file_transfer(memory_relay: MemoryRelay, tmp_path) -> None:
    source = tmp_path / "notes.txt"
    source.write_bytes(b"line one\nline two\n")
    inbox = _session(memory_relay, "bob").incoming()
    _session(memory_relay, "alice").send_file(str(source))

    msg = next(inbox)
    assert msg.is_file
    assert msg.file_type == "text/plain"
    saved = save_attachment(msg, str(tmp_path / "downloads"))
    assert "-alice." in os.path.basename(saved)
    with open(saved, "rb") as f:
        assert f.read() == b"line one\nline two\n"


def test_unknown_file_type_defaults_to_octet_stream(memory_relay: MemoryRelay, tmp_path) -> None:
    source = tmp_path / "blob.unknownext"
    source.write_bytes(b"\x00\x01")
    inbox = _session(memory_relay, "bob").incoming()
    _session(memory_relay, "alice").send_file(str(source))
    assert next(inbox).file_type == DEFAULT_FILE_TYPE


def test_save_attachment_requires_file_message(tmp_path) -> None:
    msg = ReceivedMessage(room_digest="r", content="hello", author="alice")
    with pytest.raises(ValueError):
        save_attachment(msg, str(tmp_path))


def test_save_attachment_rejects_bad_base64(tmp_path) -> None:
    msg = ReceivedMessage(room_digest="r", content="%%%", author="alice", file_type="image/png")
    with pytest.raises(ValueError):
        save_attachment(msg, str(tmp_path))


def test_session_over_relay_server(connect) -> None:
    """Two clients exchange a message through a live relay server."""
    bob_inbox = _session(connect(), "bob").incoming()
    _session(connect(), "alice").send_text("over tcp")
    msg = next(bob_inbox)
    assert (msg.author, msg.content) == ("alice", "over tcp")
    assert msg.in_room("lobby")


def test_hostile_body_does_not_end_the_inbox(memory_relay: MemoryRelay) -> None:
    """A body nested deep enough to exhaust the JSON parser is skipped like any bad body."""
    inbox = _session(memory_relay, "bob").incoming()
    nested = '{"key":' + "[" * 100000 + "]" * 100000 + "}"
    memory_relay.send(CHANNEL, crypto.b64r(nested.encode()))
    _session(memory_relay, "alice").send_text("still here")
    assert next(inbox).content == "still here"


def test_oversized_file_is_refused_before_sending(connect, tmp_path) -> None:
    """A file too large for one relay frame raises and leaves the connection usable."""
    source = tmp_path / "big.png"
    source.write_bytes(b"\x89PNG" + b"\x00" * 900_000)
    bob_inbox = _session(connect(), "bob").incoming()
    alice = _session(connect(), "alice")
    with pytest.raises(ValueError):
        alice.send_file(str(source))
    alice.send_text("after the file")
    assert next(bob_inbox).content == "after the file"
