"""Shared fixtures for the CipherCord test suite."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from ciphercord.messages import PlaintextMessage
from relay.main import RelayServer
from relay.transport import MemoryRelay, RelayConnection

PASSPHRASE = "hunter2"
ROOM = "lobby"
SOCKET_TIMEOUT = 5.0


@pytest.fixture()
def message() -> PlaintextMessage:
    """Return the canonical hunter2/lobby chat message."""
    return PlaintextMessage(passphrase=PASSPHRASE, room=ROOM, content="hello", author="alice")


@pytest.fixture()
def memory_relay() -> Iterator[MemoryRelay]:
    """Provide an in-process relay, closing its subscriptions afterwards."""
    relay = MemoryRelay()
    yield relay
    relay.close()


@pytest.fixture()
def relay_server() -> Iterator[RelayServer]:
    """Run a relay server on an ephemeral loopback port."""
    server = RelayServer("127.0.0.1", 0)
    server.start()
    yield server
    server.stop()


@pytest.fixture()
def connect(relay_server: RelayServer) -> Iterator:
    """Return a factory for relay connections that are closed after the test."""
    conns: list[RelayConnection] = []

    def _connect() -> RelayConnection:
        host, port = relay_server.address
        conn = RelayConnection(host, port)
        conn.connect()
        conn.sock.settimeout(SOCKET_TIMEOUT)
        conns.append(conn)
        return conn

    yield _connect
    for conn in conns:
        conn.close()
