"""
Main entry point for the CipherCord chat client.
Connect to the relay, print the room's messages as they arrive, and send each
line typed on stdin.
"""
import datetime
import json
import logging
import sys
import threading
import unicodedata
from typing import Iterator

import emoji

from ciphercord.envelope import describe
from ciphercord.errors import CipherCordError
from ciphercord.messages import ReceivedMessage
from relay.transport import RelayConnection
from .config import ClientConfig, configure_logging, load_config
from .net import ChatSession, save_attachment

logger = logging.getLogger(__name__)


def ts() -> str:
    return datetime.datetime.now().strftime("%H:%M:%S")


def clean(text: str) -> str:
    ''' Replace control characters so decrypted text cannot drive the terminal '''
    return "".join(" " if unicodedata.category(c) == "Cc" else c for c in text)


def render(msg: ReceivedMessage, cfg: ClientConfig) -> str:
    ''' Format one received message for the terminal, saving it first if it is a file '''
    author, file_type = clean(msg.author), clean(msg.file_type)
    if msg.is_file:
        try:
            path = save_attachment(msg, cfg.download_dir)
        except (OSError, ValueError) as err:
            return f"(System) ({ts()}) Could not save {file_type} from {author}: {clean(str(err))}"
        return f"(System) ({ts()}) {author} sent a {file_type} file, saved to {clean(path)}"
    return f"({ts()}) {author}: {clean(msg.content)}"


def print_incoming(inbox: Iterator[ReceivedMessage], cfg: ClientConfig) -> None:
    ''' Thread function printing incoming messages until the connection ends '''
    for msg in inbox:
        print(render(msg, cfg), flush=True)
    print(f"(System) ({ts()}) Disconnected.", flush=True)


def run_inspect(token: str) -> int:
    try:
        info = describe(token)
    except CipherCordError as err:
        print(f"Not a CipherCord envelope: {err}", file=sys.stderr)
        return 1
    print(json.dumps(info, indent=2))
    return 0


def main(argv=None) -> int:
    cfg = load_config(argv)
    configure_logging(cfg.log_level)

    if cfg.inspect:
        return run_inspect(cfg.inspect)
    if not cfg.passphrase:
        print("A passphrase is required (set CIPHERCORD_PASSPHRASE or enter it at the prompt).", file=sys.stderr)
        return 2

    conn = RelayConnection(cfg.host, cfg.port)
    try:
        conn.connect()
    except OSError as err:
        print(f"Could not reach relay at {cfg.host}:{cfg.port}: {err}", file=sys.stderr)
        return 1

    session = ChatSession(conn, cfg.channel, cfg.room, cfg.author, cfg.passphrase)
    inbox = session.incoming()   # joins the channel before we start sending
    threading.Thread(target=print_incoming, args=(inbox, cfg), daemon=True).start()
    print(f"Connected as {cfg.author} in room {cfg.room!r}. Type /file <path> to send a file, /quit to exit.")

    try:
        for line in sys.stdin:
            raw = line.strip()
            if not raw:
                continue
            if raw == "/quit":
                break
            try:
                if raw.startswith("/file "):
                    session.send_file(raw[6:].strip())
                else:
                    session.send_text(emoji.emojize(raw, language="alias"))
            except (OSError, ValueError) as err:
                print(f"(System) ({ts()}) Send failed: {err}", file=sys.stderr)
            except CipherCordError as err:
                logger.error("Could not package message: %s", err)
    except KeyboardInterrupt:
        pass
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
