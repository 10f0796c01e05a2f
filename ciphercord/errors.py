class CipherCordError(Exception):
    """Base class for every error raised while packaging or unpackaging a message."""
    pass


class KeyMismatch(CipherCordError):
    """Raised when the passphrase does not match the envelope's key digest.

    This is the routine failure: a mistyped passphrase, or a message from
    another group sharing the same channel.
    """
    pass


class ProtocolMismatch(CipherCordError):
    """Raised when an envelope declares a version or algorithm this client does not support."""
    pass


class AuthenticationFailed(CipherCordError):
    """Raised when a field's GCM tag does not verify (tampered, corrupted or wrong key)."""
    pass


class MalformedField(CipherCordError):
    """Raised when an encrypted field cannot even be split into nonce and ciphertext."""
    pass


class DecodeError(CipherCordError):
    """Raised when a token is not a validly encoded envelope."""
    pass


class EntropyUnavailable(CipherCordError):
    """Raised when the OS could not supply random bytes for a nonce."""
    pass
