import base64, binascii, datetime, logging, mimetypes, os
from typing import Iterator

from ciphercord.envelope import package, unpackage
from ciphercord.errors import CipherCordError, KeyMismatch
from ciphercord.messages import PlaintextMessage, ReceivedMessage
from relay.transport import Transport

DEFAULT_FILE_TYPE = "application/octet-stream"

logger = logging.getLogger(__name__)


class ChatSession:
    '''
    One participant in one room. Packages outbound text for the transport and
    unpackages whatever the transport delivers.
    '''
    def __init__(self, transport: Transport, channel: str, room: str, author: str, passphrase: str):
        self.transport = transport
        self.channel = channel
        self.room = room
        self.author = author
        self._passphrase = passphrase

    def _message(self, content: str, file_type: str = "") -> PlaintextMessage:
        return PlaintextMessage(passphrase=self._passphrase, room=self.room,
                                content=content, author=self.author, file_type=file_type)

    def send_text(self, text: str) -> str:
        ''' Send a chat line to the room. Returns the token that was sent. '''
        token = package(self._message(text))
        self.transport.send(self.channel, token)
        return token

    def send_file(self, path: str) -> str:
        '''
        Send a file to the room. The file bytes travel Base64-encoded as the
        content and the guessed media type as the file type.
        Returns the token that was sent. Raises ValueError, with nothing sent,
        when the token is too large for the transport.
        '''
        with open(path, "rb") as f:
            data = f.read()
        file_type, _ = mimetypes.guess_type(path)
        token = package(self._message(base64.b64encode(data).decode("ascii"), file_type or DEFAULT_FILE_TYPE))
        self.transport.send(self.channel, token)
        logger.info("Sent %s (%d bytes, %s)", os.path.basename(path), len(data), file_type or DEFAULT_FILE_TYPE)
        return token

    def incoming(self) -> Iterator[ReceivedMessage]:
        '''
        Subscribe to the channel and yield the messages addressed to this room.
        Bodies under another passphrase are routine on a shared channel and are
        skipped quietly; anything else that fails to unpackage is logged.
        '''
        bodies = self.transport.bodies(self.channel)
        return self._unpack(bodies)

    def _unpack(self, bodies: Iterator[str]) -> Iterator[ReceivedMessage]:
        for body in bodies:
            try:
                msg = unpackage(body, self._passphrase)
            except KeyMismatch:
                logger.debug("Skipping message for another passphrase")
                continue
            except CipherCordError as err:
                logger.warning("Dropping unreadable message: %s: %s", type(err).__name__, err)
                continue
            if not msg.in_room(self.room):
                logger.debug("Skipping message for another room")
                continue
            yield msg


def save_attachment(msg: ReceivedMessage, directory: str) -> str:
    '''
    This function writes a received file message to disk.
    Input:
        - msg: ReceivedMessage whose file_type is set
        - directory: target directory, created if missing
    Output: path of the written file
    '''
    if not msg.is_file:
        raise ValueError("message does not carry a file")
    try:
        data = base64.b64decode(msg.content, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError("file message content is not valid base64") from err

    os.makedirs(directory, exist_ok=True)
    ext = mimetypes.guess_extension(msg.file_type) or ".bin"
    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    author = "".join(c for c in msg.author if c.isalnum() or c in "-_") or "unknown"
    path = os.path.join(directory, f"{stamp}-{author}{ext}")
    with open(path, "wb") as f:
        f.write(data)
    return path
