"""Tests for the outer serialization layer."""

from __future__ import annotations

import dataclasses
import json
import re

import msgpack
import pytest

from ciphercord import crypto
from ciphercord.envelope import to_envelope
from ciphercord.errors import DecodeError, ProtocolMismatch
from ciphercord.messages import Envelope, PlaintextMessage
from ciphercord.packaging import WIRE_FIELDS, deserialize, serialize
from ciphercord.versions import CURRENT, LEGACY


@pytest.fixture()
def envelope(message: PlaintextMessage) -> Envelope:
    return to_envelope(message)


def _token(record: object) -> str:
    return crypto.b64u(msgpack.packb(record, use_bin_type=True))


def _record(env: Envelope) -> dict:
    return msgpack.unpackb(crypto.b64ud(serialize(env)), raw=False)


def test_serialize_is_url_safe_and_unpadded(envelope: Envelope) -> None:
    assert re.fullmatch(r"[A-Za-z0-9_-]+", serialize(envelope))


def test_serialize_is_deterministic(envelope: Envelope) -> None:
    assert serialize(envelope) == serialize(envelope)


def test_record_layout(envelope: Envelope) -> None:
    """The record is a map of text values written in a fixed field order."""
    record = _record(envelope)
    assert tuple(record) == WIRE_FIELDS
    assert all(isinstance(v, str) for v in record.values())
    assert record["formatVersion"] == CURRENT.format_version
    assert record["encryptedContent"] == envelope.encrypted_content


def test_deserialize_inverts_serialize(envelope: Envelope) -> None:
    assert deserialize(serialize(envelope)) == envelope


def test_deserialize_strips_surrounding_whitespace(envelope: Envelope) -> None:
    assert deserialize("  " + serialize(envelope) + "\n") == envelope


def test_serialize_refuses_legacy_packaging(envelope: Envelope) -> None:
    legacy = dataclasses.replace(envelope, format_version=LEGACY.format_version,
                                 packaging_algorithm_id=LEGACY.packaging)
    with pytest.raises(ProtocolMismatch):
        serialize(legacy)


@pytest.mark.parametrize("token", ["", "   ", "not a token!", "A", "AAAA", "e30"])
def test_deserialize_rejects_garbage(token: str) -> None:
    with pytest.raises(DecodeError):
        deserialize(token)


def test_deserialize_rejects_non_text() -> None:
    with pytest.raises(DecodeError):
        deserialize(b"bytes are not a token")  # type: ignore[arg-type]


def test_deserialize_rejects_non_map_record() -> None:
    with pytest.raises(DecodeError):
        deserialize(_token(["keyDigest", "roomDigest"]))
    with pytest.raises(DecodeError):
        deserialize(crypto.b64r(json.dumps(["not", "an", "object"]).encode()))


def test_deserialize_rejects_non_text_values(envelope: Envelope) -> None:
    record = _record(envelope)
    record["encryptedAuthor"] = 42
    with pytest.raises(DecodeError):
        deserialize(_token(record))


@pytest.mark.parametrize("field", ["keyDigest", "roomDigest", "encryptedContent", "encryptedAuthor"])
def test_deserialize_requires_structural_fields(envelope: Envelope, field: str) -> None:
    record = _record(envelope)
    del record[field]
    with pytest.raises(DecodeError):
        deserialize(_token(record))


def test_missing_identifiers_decode_as_none(envelope: Envelope) -> None:
    """Missing identifiers stay None so the compatibility check can reject them."""
    record = _record(envelope)
    for field in ("formatVersion", "encryptionAlgorithmId", "hashAlgorithmId", "packagingAlgorithmId"):
        del record[field]
    env = deserialize(_token(record))
    assert env.format_version is None
    assert env.encryption_algorithm_id is None
    assert env.hash_algorithm_id is None
    assert env.packaging_algorithm_id is None


def test_missing_file_type_means_plain_text(envelope: Envelope) -> None:
    record = _record(envelope)
    del record["fileType"]
    assert deserialize(_token(record)).file_type == ""


def test_unknown_fields_are_ignored(envelope: Envelope) -> None:
    record = _record(envelope)
    record["editedAt"] = "2026-10-19T12:00:00Z"
    assert deserialize(_token(record)) == envelope


def test_legacy_record_hashes_clear_room() -> None:
    record = {
        "key": "k" * 32,
        "version": "0.1",
        "encryption": LEGACY.encryption,
        "hashing": LEGACY.hashing,
        "room": "lobby",
        "content": "c",
        "author": "a",
    }
    env = deserialize(crypto.b64r(json.dumps(record).encode()))
    assert env.room_digest == crypto.room_digest("lobby")
    assert env.packaging_algorithm_id == LEGACY.packaging
    assert env.file_type == ""


def test_legacy_record_requires_room() -> None:
    record = {"key": "k", "version": "0.1", "content": "c", "author": "a"}
    with pytest.raises(DecodeError):
        deserialize(crypto.b64r(json.dumps(record).encode()))


def test_deeply_nested_legacy_record_is_decode_error() -> None:
    """Nesting deep enough to exhaust the parser's stack is still just a bad token."""
    nested = '{"key":' + "[" * 100000 + "]" * 100000 + "}"
    with pytest.raises(DecodeError):
        deserialize(crypto.b64r(nested.encode()))


def test_deeply_nested_record_is_decode_error() -> None:
    nested = b"\x91" * 100000 + b"\xc0"   # fixarray of one, repeated
    with pytest.raises(DecodeError):
        deserialize(crypto.b64u(nested))
