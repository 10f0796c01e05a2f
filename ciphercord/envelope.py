"""Packaging and unpackaging of CipherCord messages.

package() and unpackage() are the entry points for callers. The remaining
functions expose the individual steps (record assembly, compatibility and key
checks) for tooling and tests.
"""
import logging, secrets
from typing import Any, Dict

from ciphercord.crypto import decrypt_field, derive_key, encrypt_field, key_digest, room_digest
from ciphercord.errors import KeyMismatch, ProtocolMismatch
from ciphercord.messages import Envelope, PlaintextMessage, ReceivedMessage
from ciphercord.packaging import deserialize, serialize
from ciphercord.versions import CURRENT, profile_for

logger = logging.getLogger(__name__)


def to_envelope(msg: PlaintextMessage) -> Envelope:
    '''
    This function encrypts a PlaintextMessage into an Envelope for the current protocol.
    Content and author are encrypted separately, each under its own nonce.
    Raises EntropyUnavailable if no nonce could be generated.
    '''
    key32 = derive_key(msg.passphrase)
    return Envelope(
        key_digest=key_digest(key32),
        format_version=CURRENT.format_version,
        encryption_algorithm_id=CURRENT.encryption,
        hash_algorithm_id=CURRENT.hashing,
        packaging_algorithm_id=CURRENT.packaging,
        room_digest=room_digest(msg.room),
        file_type=msg.file_type,
        encrypted_content=encrypt_field(msg.content, key32),
        encrypted_author=encrypt_field(msg.author, key32),
    )


def check_key(env: Envelope, passphrase: str) -> str:
    '''
    This function verifies the passphrase against the envelope's key digest.
    Output: key32 for the passphrase
    Raises KeyMismatch without attempting any decryption.
    '''
    key32 = derive_key(passphrase)
    if not secrets.compare_digest(env.key_digest.encode("utf-8"), key_digest(key32).encode("utf-8")):
        raise KeyMismatch("passphrase does not match the envelope key digest")
    return key32


def from_envelope(env: Envelope, passphrase: str) -> ReceivedMessage:
    '''
    This function decrypts an Envelope.
    Input:
        - env: received Envelope
        - passphrase: locally held shared secret
    Output: ReceivedMessage (the room is returned as its digest)
    Raises ProtocolMismatch or KeyMismatch before any field is decrypted;
    AuthenticationFailed and MalformedField come from the fields themselves.
    '''
    profile = profile_for(env)
    key32 = check_key(env, passphrase)
    return ReceivedMessage(
        room_digest=env.room_digest,
        content=decrypt_field(env.encrypted_content, key32),
        author=decrypt_field(env.encrypted_author, key32),
        file_type=env.file_type,
        format_version=profile.format_version,
    )


def from_envelope_unverified(env: Envelope, passphrase: str) -> ReceivedMessage:
    '''
    Diagnostic variant of from_envelope() that skips the protocol and key checks.
    A foreign or malformed envelope only fails once a field's tag is checked,
    so the error reported is AuthenticationFailed whatever the real cause.
    '''
    logger.warning("Decrypting envelope without protocol or key verification")
    key32 = derive_key(passphrase)
    return ReceivedMessage(
        room_digest=env.room_digest,
        content=decrypt_field(env.encrypted_content, key32),
        author=decrypt_field(env.encrypted_author, key32),
        file_type=env.file_type,
        format_version=env.format_version,
    )


def package(msg: PlaintextMessage) -> str:
    ''' This function packages a PlaintextMessage into a token ready to hand to a transport '''
    return serialize(to_envelope(msg))


def unpackage(token: str, passphrase: str) -> ReceivedMessage:
    ''' This function unpackages a token received from a transport '''
    return from_envelope(deserialize(token), passphrase)


def describe(token: str) -> Dict[str, Any]:
    '''
    This function returns the plaintext metadata of a token without decrypting it.
    Raises DecodeError if the token is not an envelope.
    '''
    env = deserialize(token)
    try:
        profile_for(env)
        supported = True
    except ProtocolMismatch as err:
        logger.debug("Envelope not supported: %s", err)
        supported = False
    return {
        "format_version": env.format_version,
        "encryption": env.encryption_algorithm_id,
        "hashing": env.hash_algorithm_id,
        "packaging": env.packaging_algorithm_id,
        "room_digest": env.room_digest,
        "file_type": env.file_type,
        "supported": supported,
    }
