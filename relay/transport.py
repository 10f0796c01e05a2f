"""Transports that carry opaque text bodies between chat clients.

A transport is handed to whatever needs to send or receive; nothing here is a
process-wide connection. Incoming bodies are exposed as a lazy, unbounded
iterator per subscription instead of a callback.
"""
import logging
import socket
from queue import Queue
from threading import Lock
from typing import Dict, Iterator, List, Optional, Protocol

from relay.protocol import ERROR, JOIN, JOINED, LEAVE, POST, FrameReader, iso_now, send_frame

logger = logging.getLogger(__name__)


class Transport(Protocol):
    def send(self, channel: str, body: str) -> None:
        ...

    def bodies(self, channel: str) -> Iterator[str]:
        ...


_CLOSED = object()   # queue sentinel ending a MemoryRelay subscription

class MemoryRelay:
    ''' In-process relay: every body sent to a channel is delivered to all of its subscribers '''
    def __init__(self):
        self._lock = Lock()
        self._subscribers: Dict[str, List[Queue]] = {}

    def send(self, channel: str, body: str) -> None:
        with self._lock:
            queues = list(self._subscribers.get(channel, ()))
        for q in queues:
            q.put(body)

    def bodies(self, channel: str) -> Iterator[str]:
        '''
        Subscribe to a channel. The subscription is registered immediately, so
        bodies sent after this call returns are never missed.
        '''
        q: Queue = Queue()
        with self._lock:
            self._subscribers.setdefault(channel, []).append(q)
        return self._drain(channel, q)

    def _drain(self, channel: str, q: Queue) -> Iterator[str]:
        try:
            while True:
                item = q.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            with self._lock:
                subs = self._subscribers.get(channel, [])
                if q in subs:
                    subs.remove(q)

    def close(self) -> None:
        ''' End every open subscription '''
        with self._lock:
            queues = [q for subs in self._subscribers.values() for q in subs]
        for q in queues:
            q.put(_CLOSED)


class RelayConnection:
    ''' TCP client for relay.main.RelayServer '''
    def __init__(self, host: str, port: int):
        self.host, self.port = host, port
        self.sock: Optional[socket.socket] = None
        self._reader: Optional[FrameReader] = None
        self._send_lock = Lock()
        self._channel: Optional[str] = None   # one subscription per connection

    def connect(self) -> None:
        # Establish a TCP connection to the relay.
        self.sock = socket.create_connection((self.host, self.port))
        self.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send each frame immediately
        self._reader = FrameReader(self.sock)
        logger.info("Connected to relay %s:%s", self.host, self.port)

    def _send(self, frame: dict) -> None:
        if self.sock is None:
            raise ConnectionError("not connected to relay")
        with self._send_lock:
            send_frame(self.sock, frame)

    def send(self, channel: str, body: str) -> None:
        ''' Post a body to a channel '''
        self._send({"type": POST, "channel": channel, "body": body, "ts": iso_now()})

    def bodies(self, channel: str) -> Iterator[str]:
        '''
        Join a channel and wait for the relay to acknowledge it, then return an
        iterator over the bodies posted to it. The iterator ends when the
        connection closes.
        '''
        if self._reader is None:
            raise ConnectionError("not connected to relay")
        if self._channel is not None:
            raise RuntimeError(f"connection already subscribed to {self._channel!r}")
        self._send({"type": JOIN, "channel": channel})
        while True:
            frame = self._reader.read()
            if frame.get("type") == JOINED and frame.get("channel") == channel:
                break
            if frame.get("type") == ERROR:
                raise ConnectionError(f"relay refused join: {frame.get('code')}")
        self._channel = channel
        return self._receive(channel)

    def _receive(self, channel: str) -> Iterator[str]:
        while True:
            try:
                frame = self._reader.read()
            except (ConnectionError, OSError) as err:
                logger.info("Relay connection ended: %s", err)
                return
            ftype = frame.get("type")
            if ftype == POST and frame.get("channel") == channel and isinstance(frame.get("body"), str):
                yield frame["body"]
            elif ftype == ERROR:
                logger.warning("Relay reported error: %s", frame.get("code"))

    def close(self) -> None:
        if self.sock is None:
            return
        try:
            self._send({"type": LEAVE})   # tell the relay we are leaving
        except OSError:
            pass
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
        self.sock = None
