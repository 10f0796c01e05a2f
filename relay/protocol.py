import datetime
import json
import socket
from typing import Any, Dict

ENC = "utf-8"   # encoding for JSON text
DELIM = b"\n"   # one JSON frame per line
MAX_FRAME_BYTES = 1 << 20   # a frame longer than this is treated as a broken peer

# Frame types exchanged with the relay. Every frame is a JSON object with a "type" key.
JOIN = "join"       # client -> relay  {"channel"}
JOINED = "joined"   # relay -> client  {"channel"}
POST = "post"       # both directions   {"channel", "body", "ts"}
LEAVE = "leave"     # client -> relay
ERROR = "error"     # relay -> client  {"code"}


def iso_now() -> str:
    '''Return current UTC time in ISO format'''
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

def encode_frame(frame: Dict[str, Any]) -> bytes:
    '''
    The function renders one frame as a line of JSON.
    Raises ValueError if the line would be longer than MAX_FRAME_BYTES, since
    the other end drops a peer that sends such a frame.
    '''
    line = json.dumps(frame, ensure_ascii=False).encode(ENC)
    if len(line) > MAX_FRAME_BYTES:
        raise ValueError(f"frame is {len(line)} bytes, over the relay limit of {MAX_FRAME_BYTES}")
    return line + DELIM

def send_frame(sock: socket.socket, frame: Dict[str, Any]) -> None:
    '''
    The function sends one frame over a socket as a line of JSON.
    Inputs:
        - sock: socket.socket - the socket to send the data through
        - frame: dict - the frame to be sent
    Nothing is written when the frame is too large.
    '''
    sock.sendall(encode_frame(frame))


class FrameReader:
    '''
    Reads newline-delimited JSON frames from one socket.
    Keeps the residual bytes between calls so several frames arriving in one
    recv() are returned one per read().
    '''
    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._buf = bytearray()

    def read(self) -> Dict[str, Any]:
        '''
        Return the next frame. Raises ConnectionError when the peer closes the
        socket or sends something that is not a JSON object.
        '''
        while True:
            nl = self._buf.find(DELIM)
            if nl != -1:  # one full frame has arrived
                if nl > MAX_FRAME_BYTES:
                    raise ConnectionError(f"frame exceeds {MAX_FRAME_BYTES} bytes")
                line = bytes(self._buf[:nl])
                del self._buf[:nl + 1]
                if not line.strip():
                    continue
                try:
                    frame = json.loads(line.decode(ENC))
                except (ValueError, RecursionError) as err:
                    raise ConnectionError("peer sent a frame that is not JSON") from err
                if not isinstance(frame, dict):
                    raise ConnectionError("peer sent a frame that is not a JSON object")
                return frame

            if len(self._buf) > MAX_FRAME_BYTES:
                raise ConnectionError(f"frame exceeds {MAX_FRAME_BYTES} bytes")

            chunk = self.sock.recv(4096)
            if not chunk:
                raise ConnectionError("socket closed")
            self._buf.extend(chunk)
