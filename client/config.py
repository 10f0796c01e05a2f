"""
Client configuration. Command line flags win over CIPHERCORD_* environment
variables, which may also come from a .env file in the working directory.
"""
import argparse
import getpass
import logging
import os
from dataclasses import dataclass, field
from typing import Optional, Sequence

from dotenv import find_dotenv, load_dotenv

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ClientConfig:
    host: str = "127.0.0.1"
    port: int = 5050
    channel: str = "ciphercord"      # relay channel all groups share
    room: str = "lobby"              # only its digest is ever sent
    author: str = "anonymous"
    passphrase: str = field(default="", repr=False)
    download_dir: str = "downloads"  # where received files are written
    log_level: str = "WARNING"
    inspect: Optional[str] = None    # token to describe instead of chatting


def build_parser() -> argparse.ArgumentParser:
    env = os.environ
    ap = argparse.ArgumentParser(description="CipherCord terminal chat client")
    ap.add_argument("--host", default=env.get("CIPHERCORD_HOST", "127.0.0.1"), help="Relay host address")
    ap.add_argument("--port", type=int, default=int(env.get("CIPHERCORD_PORT", "5050")), help="Relay port")
    ap.add_argument("--channel", default=env.get("CIPHERCORD_CHANNEL", "ciphercord"), help="Relay channel")
    ap.add_argument("--room", default=env.get("CIPHERCORD_ROOM", "lobby"), help="Room name")
    ap.add_argument("--author", default=env.get("CIPHERCORD_AUTHOR", "anonymous"), help="Display name")
    ap.add_argument("--download-dir", default=env.get("CIPHERCORD_DOWNLOAD_DIR", "downloads"),
                    help="Directory for received files")
    ap.add_argument("--log-level", default=env.get("LOG_LEVEL", "WARNING"), help="Logging level")
    ap.add_argument("--inspect", metavar="TOKEN", help="Print the plaintext metadata of a token and exit")
    return ap


def load_config(argv: Optional[Sequence[str]] = None, prompt: bool = True) -> ClientConfig:
    '''
    Build the client configuration.
    The passphrase is read from CIPHERCORD_PASSPHRASE; it is never a flag so it
    does not end up in shell history. If it is unset and prompt is True the
    user is asked for it.
    '''
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)
    passphrase = os.environ.get("CIPHERCORD_PASSPHRASE", "")
    if not passphrase and prompt and not args.inspect:
        passphrase = getpass.getpass("Passphrase: ")
    return ClientConfig(
        host=args.host,
        port=args.port,
        channel=args.channel,
        room=args.room,
        author=args.author,
        passphrase=passphrase,
        download_dir=args.download_dir,
        log_level=args.log_level,
        inspect=args.inspect,
    )


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)
