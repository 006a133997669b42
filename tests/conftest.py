from __future__ import annotations

import errno
import socket
import threading
from typing import Callable, Optional

import pytest

from ecpds.config import ClientConfig
from ecpds.net import Connector


class ScriptedPeer:
    """In-memory stand-in for a socket: replays canned replies, records what was sent.

    With ``accept`` set, the peer drops the link once that many bytes have been
    written to it.
    """

    def __init__(self, incoming: bytes = b"", accept: Optional[int] = None):
        self.incoming = bytearray(incoming)
        self.sent = bytearray()
        self.accept = accept
        self.closed = False

    @classmethod
    def replying(cls, *lines: str, accept: Optional[int] = None) -> "ScriptedPeer":
        return cls("".join(line + "\n" for line in lines).encode(), accept=accept)

    def send(self, data) -> int:
        data = bytes(data)
        if self.accept is not None:
            room = self.accept - len(self.sent)
            if room <= 0:
                raise BrokenPipeError(errno.EPIPE, "Broken pipe")
            data = data[:room]
        self.sent += data
        return len(data)

    def recv(self, bufsize: int) -> bytes:
        chunk = bytes(self.incoming[:bufsize])
        del self.incoming[:bufsize]
        return chunk

    def close(self) -> None:
        self.closed = True

    def lines(self) -> list[str]:
        return self.sent.decode("utf-8", "replace").split("\n")


def quick_config(**overrides) -> ClientConfig:
    values = dict(connect_timeout=1.0, try_count=1, try_delay=0.0, bind_reserved_port=False)
    values.update(overrides)
    return ClientConfig(**values)


def scripted_connector(peers: dict, config: Optional[ClientConfig] = None) -> Connector:
    """Connector whose opener hands out ``peers[host]``; missing hosts refuse."""

    def opener(host: str, port: str, timeout: float):
        peer = peers.get(host)
        if peer is None:
            raise ConnectionRefusedError(errno.ECONNREFUSED, f"{host}:{port} refused")
        return peer

    return Connector(config or quick_config(), opener=opener, sleep=lambda s: None)


class LineServer:
    """Loopback TCP server running ``script(reader, conn)`` for one connection."""

    def __init__(self, script: Callable):
        self.script = script
        self.received: list[str] = []
        self.error: Optional[BaseException] = None
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.sock.settimeout(10.0)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._run, daemon=True)
        self.thread.start()

    def readline(self, reader) -> str:
        line = reader.readline().decode("utf-8").rstrip("\n")
        self.received.append(line)
        return line

    def read_until(self, reader, key: str) -> None:
        while True:
            line = self.readline(reader)
            if line == key or line.startswith(key + " ") or not line:
                return

    def _run(self) -> None:
        try:
            conn, _ = self.sock.accept()
            with conn, conn.makefile("rb") as reader:
                conn.settimeout(10.0)
                self.script(self, reader, conn)
        except BaseException as exc:  # surfaced by join()
            self.error = exc
        finally:
            self.sock.close()

    def join(self) -> None:
        self.thread.join(timeout=10.0)
        if self.error is not None:
            raise self.error


@pytest.fixture
def config() -> ClientConfig:
    return quick_config()
