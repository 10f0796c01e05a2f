"""Protocol identifiers and the explicit set of versions this client accepts.

Every envelope names its format version and the encryption, hashing and
packaging schemes it was built with. A receiver looks the version up in
SUPPORTED_PROFILES and requires every identifier to match that profile
exactly; anything else is a ProtocolMismatch. Adding a version means adding
a profile here and teaching ciphercord.packaging how to read it.
"""
from dataclasses import dataclass
from typing import Dict

from ciphercord.errors import ProtocolMismatch
from ciphercord.messages import Envelope

# Advanced Encryption Standard (256-bit) / Galois/Counter Mode / Base64 (raw)
ENCRYPTION_TYPE = "aes-256/gcm/b64r"

# Secure Hash Algorithm (256-bit) / Base64 (raw) / cut to 32 characters
HASHING_TYPE = "sha-256/b64r/:32"

# JSON record / Base64 (raw). Implied by v0.1 records, which carry no packaging field.
PACKAGING_JSON = "json/b64r"

# MessagePack map / URL-safe Base64 (raw)
PACKAGING_MSGPACK = "msgpack/b64u"


@dataclass(frozen=True)
class ProtocolProfile:
    format_version: str
    encryption: str
    hashing: str
    packaging: str

    def matches(self, env: Envelope) -> bool:
        return (env.format_version == self.format_version
                and env.encryption_algorithm_id == self.encryption
                and env.hash_algorithm_id == self.hashing
                and env.packaging_algorithm_id == self.packaging)


# First release: JSON record, room name in clear, no file type.
LEGACY = ProtocolProfile("0.1", ENCRYPTION_TYPE, HASHING_TYPE, PACKAGING_JSON)

# Room hashed, file type added, MessagePack record.
CURRENT = ProtocolProfile("0.2", ENCRYPTION_TYPE, HASHING_TYPE, PACKAGING_MSGPACK)

SUPPORTED_PROFILES: Dict[str, ProtocolProfile] = {p.format_version: p for p in (LEGACY, CURRENT)}


def profile_for(env: Envelope) -> ProtocolProfile:
    '''
    This function returns the profile an envelope was built with.
    Raises ProtocolMismatch for an unknown version, a missing identifier, or an
    identifier that differs from the one its version defines.
    '''
    profile = SUPPORTED_PROFILES.get(env.format_version) if env.format_version is not None else None
    if profile is None:
        raise ProtocolMismatch(f"unsupported format version {env.format_version!r}")
    if not profile.matches(env):
        raise ProtocolMismatch(
            f"version {profile.format_version} envelope declares "
            f"encryption={env.encryption_algorithm_id!r} hashing={env.hash_algorithm_id!r} "
            f"packaging={env.packaging_algorithm_id!r}"
        )
    return profile
