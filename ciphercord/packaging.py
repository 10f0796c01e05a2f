import json, logging
from typing import Any, Dict, Optional

import msgpack
from msgpack.exceptions import UnpackException

from ciphercord.crypto import b64rd, b64ud, b64u, room_digest
from ciphercord.errors import DecodeError, ProtocolMismatch
from ciphercord.messages import Envelope
from ciphercord.versions import CURRENT, LEGACY

logger = logging.getLogger(__name__)

# Field names of the current record, in the order they are written.
WIRE_FIELDS = (
    "keyDigest",
    "formatVersion",
    "encryptionAlgorithmId",
    "hashAlgorithmId",
    "packagingAlgorithmId",
    "roomDigest",
    "fileType",
    "encryptedContent",
    "encryptedAuthor",
)

# v0.1 records were JSON objects with these keys.
_LEGACY_REQUIRED = ("key", "room", "content", "author")


def serialize(env: Envelope) -> str:
    '''
    This function encodes an envelope into a text token.
    Input: Envelope built for the current protocol
    Output: URL-safe raw Base64 of a MessagePack map (field name -> text)
    Raises ProtocolMismatch for any other packaging; v0.1 envelopes are read-only.
    '''
    if env.packaging_algorithm_id != CURRENT.packaging:
        raise ProtocolMismatch(f"cannot serialize with packaging {env.packaging_algorithm_id!r}")
    record = {
        "keyDigest": env.key_digest,
        "formatVersion": env.format_version,
        "encryptionAlgorithmId": env.encryption_algorithm_id,
        "hashAlgorithmId": env.hash_algorithm_id,
        "packagingAlgorithmId": env.packaging_algorithm_id,
        "roomDigest": env.room_digest,
        "fileType": env.file_type,
        "encryptedContent": env.encrypted_content,
        "encryptedAuthor": env.encrypted_author,
    }
    return b64u(msgpack.packb(record, use_bin_type=True))


def deserialize(token: str) -> Envelope:
    '''
    This function decodes a text token back into an envelope.
    Both the current MessagePack record and the v0.1 JSON record are read.
    Missing protocol identifiers come back as None so that the compatibility
    check rejects them; missing structural fields raise DecodeError here.
    '''
    if not isinstance(token, str):
        raise DecodeError(f"token must be text, got {type(token).__name__}")
    raw = _decode_text(token.strip())

    if raw[:1] == b"{":
        return _from_legacy(_load_json(raw))
    return _from_record(_load_msgpack(raw))


def _decode_text(token: str) -> bytes:
    if not token:
        raise DecodeError("empty token")
    for decode in (b64ud, b64rd):
        try:
            return decode(token)
        except ValueError:
            continue
    raise DecodeError("token is not valid raw base64")

def _load_msgpack(raw: bytes) -> Dict[str, Any]:
    try:
        obj = msgpack.unpackb(raw, raw=False)
    except (ValueError, TypeError, RecursionError, UnpackException) as err:
        raise DecodeError("token does not contain a MessagePack record") from err
    if not isinstance(obj, dict):
        raise DecodeError(f"envelope record must be a map, got {type(obj).__name__}")
    return obj

def _load_json(raw: bytes) -> Dict[str, Any]:
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError, RecursionError) as err:  # deeply nested arrays exhaust the stack
        raise DecodeError("token does not contain a JSON record") from err
    if not isinstance(obj, dict):
        raise DecodeError(f"envelope record must be an object, got {type(obj).__name__}")
    return obj


def _text(record: Dict[str, Any], name: str, required: bool) -> Optional[str]:
    value = record.get(name)
    if value is None:
        if required:
            raise DecodeError(f"envelope record is missing {name!r}")
        return None
    if not isinstance(value, str):
        raise DecodeError(f"envelope field {name!r} must be text, got {type(value).__name__}")
    try:
        value.encode("utf-8")  # JSON allows lone surrogates
    except UnicodeEncodeError as err:
        raise DecodeError(f"envelope field {name!r} is not valid UTF-8 text") from err
    return value

def _from_record(record: Dict[str, Any]) -> Envelope:
    unknown = set(record) - set(WIRE_FIELDS)
    if unknown:
        logger.debug("Ignoring unknown envelope fields: %s", sorted(map(str, unknown)))
    return Envelope(
        key_digest=_text(record, "keyDigest", True),
        format_version=_text(record, "formatVersion", False),
        encryption_algorithm_id=_text(record, "encryptionAlgorithmId", False),
        hash_algorithm_id=_text(record, "hashAlgorithmId", False),
        packaging_algorithm_id=_text(record, "packagingAlgorithmId", False),
        room_digest=_text(record, "roomDigest", True),
        file_type=_text(record, "fileType", False) or "",
        encrypted_content=_text(record, "encryptedContent", True),
        encrypted_author=_text(record, "encryptedAuthor", True),
    )

def _from_legacy(record: Dict[str, Any]) -> Envelope:
    for name in _LEGACY_REQUIRED:
        _text(record, name, True)
    return Envelope(
        key_digest=record["key"],
        format_version=_text(record, "version", False),
        encryption_algorithm_id=_text(record, "encryption", False),
        hash_algorithm_id=_text(record, "hashing", False),
        packaging_algorithm_id=LEGACY.packaging,
        room_digest=room_digest(record["room"]),  # v0.1 sent the room name in clear
        file_type="",
        encrypted_content=record["content"],
        encrypted_author=record["author"],
    )
