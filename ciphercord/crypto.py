import base64, os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ciphercord.errors import AuthenticationFailed, EntropyUnavailable, MalformedField

KEY_CHARS = 32     # key32 is 32 characters of the base64-rendered digest
NONCE_SIZE = 12    # 96-bit GCM nonce
TAG_SIZE = 16      # GCM appends a 128-bit tag to the ciphertext
ENC = "utf-8"

_URL_TO_STD = str.maketrans("-_", "+/")


def b64r(b: bytes) -> str:
    ''' This function encodes bytes to unpadded standard Base64 '''
    return base64.b64encode(b).decode("ascii").rstrip("=")

def b64rd(s: str) -> bytes:
    '''
    This function decodes unpadded standard Base64.
    Padded input is rejected so that every token has exactly one spelling.
    Raises ValueError on any invalid input.
    '''
    if "=" in s:
        raise ValueError("unexpected padding in raw base64")
    return base64.b64decode(s + "=" * (-len(s) % 4), validate=True)

def b64u(b: bytes) -> str:
    ''' This function encodes bytes to unpadded URL-safe Base64 '''
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")

def b64ud(s: str) -> bytes:
    ''' This function decodes unpadded URL-safe Base64, raising ValueError on invalid input '''
    if "=" in s:
        raise ValueError("unexpected padding in raw base64")
    if "+" in s or "/" in s:
        raise ValueError("standard alphabet character in URL-safe base64")
    std = s.translate(_URL_TO_STD)
    return base64.b64decode(std + "=" * (-len(std) % 4), validate=True)


def hash32(s: str) -> str:
    '''
    This function hashes text down to 32 characters.
        Input: any text (passphrase, key32 or room name)
        Output: SHA-256 digest rendered as raw Base64, cut to 32 characters
    '''
    d = hashes.Hash(hashes.SHA256())
    d.update(s.encode(ENC))
    return b64r(d.finalize())[:KEY_CHARS]

def derive_key(passphrase: str) -> str:
    '''
    This function turns a passphrase into key32.
    The 32 characters themselves are the AES-256 key bytes; the text is never
    decoded back to the raw digest.
    '''
    return hash32(passphrase)

def key_digest(key32: str) -> str:
    ''' This function returns the verification value sent in place of key32 '''
    return hash32(key32)

def room_digest(room: str) -> str:
    ''' This function returns the opaque tag used to group messages by room '''
    return hash32(room)


def _cipher(key32: str) -> AESGCM:
    key_bytes = key32.encode(ENC)
    if len(key_bytes) != KEY_CHARS:
        raise ValueError(f"key32 must be exactly {KEY_CHARS} bytes, got {len(key_bytes)}")
    return AESGCM(key_bytes)

def encrypt_field(plain: str, key32: str) -> str:
    '''
    This function encrypts one text field using AES-256-GCM.
    Input:
        - plain: field text
        - key32: 32-character key from derive_key()
    Output: raw Base64 string of nonce || ciphertext || tag
    Raises EntropyUnavailable if the OS cannot provide a nonce.
    '''
    aes = _cipher(key32)
    try:
        nonce = os.urandom(NONCE_SIZE)  # fresh nonce for every field
    except (NotImplementedError, OSError) as err:
        raise EntropyUnavailable("could not read secure random bytes for nonce") from err
    sealed = aes.encrypt(nonce, plain.encode(ENC), None)  # returns ct||tag
    return b64r(nonce + sealed)

def decrypt_field(token: str, key32: str) -> str:
    '''
    This function decrypts a field produced by encrypt_field().
    Input:
        - token: raw Base64 string of nonce || ciphertext || tag
        - key32: 32-character key from derive_key()
    Output: decrypted field text
    Raises MalformedField if the token cannot hold a nonce, and
    AuthenticationFailed if the tag does not verify.
    '''
    aes = _cipher(key32)
    try:
        data = b64rd(token)
    except (ValueError, TypeError) as err:
        raise MalformedField("encrypted field is not valid raw base64") from err

    if len(data) < NONCE_SIZE:
        raise MalformedField(f"encrypted field is {len(data)} bytes, smaller than the {NONCE_SIZE}-byte nonce")

    nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
    try:
        plain = aes.decrypt(nonce, sealed, None)
    except InvalidTag as err:
        raise AuthenticationFailed("encrypted field failed authentication") from err

    try:
        return plain.decode(ENC)
    except UnicodeDecodeError as err:
        raise MalformedField("decrypted field is not valid UTF-8") from err
