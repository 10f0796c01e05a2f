import secrets
from dataclasses import dataclass, field
from typing import Optional

from ciphercord.crypto import room_digest


@dataclass(frozen=True)
class PlaintextMessage:
    '''A message as the sender composes it. Nothing here goes over the wire as-is.'''
    passphrase: str = field(repr=False)  # shared secret, never stored or sent
    room: str                            # sent only as a digest
    content: str                         # chat text, or Base64 of a file when file_type is set
    author: str                          # sender's display name
    file_type: str = ""                  # media type of content; "" means plain chat text


# Everything except the two encrypted fields stays in plaintext so a receiver
# can decide compatibility before touching the ciphertext.
@dataclass(frozen=True)
class Envelope:
    key_digest: str                          # hash32(key32), never key32 itself
    format_version: Optional[str]
    encryption_algorithm_id: Optional[str]
    hash_algorithm_id: Optional[str]
    packaging_algorithm_id: Optional[str]
    room_digest: str
    file_type: str
    encrypted_content: str
    encrypted_author: str


@dataclass(frozen=True)
class ReceivedMessage:
    '''A decrypted message. The room is only known by its digest.'''
    room_digest: str
    content: str
    author: str
    file_type: str = ""
    format_version: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return bool(self.file_type)

    def in_room(self, room: str) -> bool:
        ''' This function checks whether the message was sent to the given room name '''
        return secrets.compare_digest(self.room_digest.encode("utf-8"), room_digest(room).encode("utf-8"))
