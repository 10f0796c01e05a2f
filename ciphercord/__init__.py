# ciphercord/__init__.py
from .envelope import package, unpackage
from .errors import (
    AuthenticationFailed,
    CipherCordError,
    DecodeError,
    EntropyUnavailable,
    KeyMismatch,
    MalformedField,
    ProtocolMismatch,
)
from .messages import PlaintextMessage, ReceivedMessage

__all__ = [
    "package", "unpackage", "PlaintextMessage", "ReceivedMessage",
    "CipherCordError", "KeyMismatch", "ProtocolMismatch", "AuthenticationFailed",
    "MalformedField", "DecodeError", "EntropyUnavailable",
]
