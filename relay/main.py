"""
Relay server: a stand-in for the public channel CipherCord messages travel over.
Bodies are opaque text; the relay never looks inside them.
"""
import argparse
import logging
import os
import socket
import threading
from typing import Optional, Set, Tuple

from relay.protocol import ERROR, JOIN, JOINED, LEAVE, POST, FrameReader, encode_frame, iso_now
from relay.state import RelayState, Subscriber

HOST = os.getenv("CIPHERCORD_RELAY_HOST", "0.0.0.0")
PORT = int(os.getenv("CIPHERCORD_RELAY_PORT", "5050"))
ACCEPT_POLL = 0.2   # seconds between checks for stop() in the accept loop

logger = logging.getLogger(__name__)


class RelayServer:
    ''' Line-framed TCP relay: one thread per connection, posts broadcast per channel '''
    def __init__(self, host: str = HOST, port: int = PORT):
        self.host, self.port = host, port
        self.state = RelayState()
        self._srv: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = threading.Event()
        self._conns_lock = threading.Lock()
        self._conns: Set[Subscriber] = set()

    @property
    def address(self) -> Tuple[str, int]:
        if self._srv is None:
            raise RuntimeError("relay server is not started")
        host, port = self._srv.getsockname()[:2]
        return host, port

    def start(self) -> None:
        self._srv = socket.create_server((self.host, self.port))
        self._srv.settimeout(ACCEPT_POLL)
        self._running.set()
        self._thread = threading.Thread(target=self._accept_loop, name="relay-accept", daemon=True)
        self._thread.start()
        logger.info("Relay listening on %s:%s", *self.address)

    def serve_forever(self) -> None:
        self.start()
        try:
            while self._thread.is_alive():
                self._thread.join(0.5)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
        finally:
            self.stop()

    def stop(self) -> None:
        channels = self.state.channel_names()
        self._running.clear()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self._srv is not None:
            self._srv.close()
            self._srv = None
        with self._conns_lock:
            conns = list(self._conns)
        for sub in conns:   # wake handler threads blocked in recv()
            try:
                sub.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        logger.info("Relay stopped with %d open channel(s): %s", len(channels), ", ".join(sorted(channels)) or "none")

    def _accept_loop(self) -> None:
        while self._running.is_set():
            try:
                conn, addr = self._srv.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._running.is_set():
                    logger.exception("Accept failed")
                break
            conn.settimeout(None)
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            threading.Thread(target=self.handle_client, args=(conn, addr), daemon=True).start()

    def handle_client(self, conn: socket.socket, addr) -> None:
        ''' This function serves one connection until it leaves or drops '''
        sub = Subscriber(name=f"{addr[0]}:{addr[1]}", sock=conn)
        with self._conns_lock:
            self._conns.add(sub)
        logger.info("%s connected", sub.name)
        reader = FrameReader(conn)
        try:
            while True:
                frame = reader.read()
                ftype = frame.get("type")
                if ftype == JOIN:
                    self.join(sub, frame.get("channel"))
                elif ftype == POST:
                    self.route(sub, frame)
                elif ftype == LEAVE:
                    break
                else:
                    sub.send({"type": ERROR, "code": "UNKNOWN_TYPE", "ts": iso_now()})
        except (ConnectionError, OSError) as err:
            logger.debug("%s dropped: %s", sub.name, err)
        except Exception:
            logger.exception("Unexpected error serving %s", sub.name)
        finally:
            self.state.leave(sub)
            with self._conns_lock:
                self._conns.discard(sub)
            try:
                conn.close()
            except OSError:
                pass
            logger.info("%s disconnected", sub.name)

    def join(self, sub: Subscriber, channel) -> None:
        if not isinstance(channel, str) or not channel:
            sub.send({"type": ERROR, "code": "BAD_CHANNEL", "ts": iso_now()})
            return
        self.state.join(channel, sub)
        sub.send({"type": JOINED, "channel": channel, "ts": iso_now()})
        logger.info("%s joined %r", sub.name, channel)

    def route(self, sender: Subscriber, frame: dict) -> None:
        ''' This function broadcasts a post to every subscriber of its channel, sender included '''
        channel, body = frame.get("channel"), frame.get("body")
        if not isinstance(channel, str) or not isinstance(body, str):
            sender.send({"type": ERROR, "code": "BAD_POST", "ts": iso_now()})
            return
        out = {"type": POST, "channel": channel, "body": body, "ts": iso_now()}
        try:
            encode_frame(out)
        except ValueError:
            sender.send({"type": ERROR, "code": "TOO_LARGE", "ts": iso_now()})
            return
        rcpts = self.state.subscribers(channel)
        for rcpt in rcpts:
            try:
                rcpt.send(out)
            except OSError as err:
                logger.debug("Dropping post for %s: %s", rcpt.name, err)
        logger.debug("Relayed %d-char post on %r to %d subscriber(s)", len(body), channel, len(rcpts))


def main(argv=None):
    ap = argparse.ArgumentParser(description="CipherCord relay server")
    ap.add_argument("--host", default=HOST, help="Address to listen on")
    ap.add_argument("--port", type=int, default=PORT, help="Port to listen on")
    ap.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    RelayServer(args.host, args.port).serve_forever()


if __name__ == "__main__":
    main()
