from __future__ import annotations

import errno
import logging
import os
import random
import select
import socket
import time
from typing import Callable, Optional

from .config import ClientConfig
from .constants import RESERVED_PORT_HIGH, RESERVED_PORT_LOW
from .errors import ConnectError, LinkError

logger = logging.getLogger(__name__)

_IN_PROGRESS = (errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY)


class Connection:
    """Blocking TCP stream to one host, as returned by :class:`Connector`."""

    def __init__(self, sock: socket.socket, host: str, port: str):
        self.sock = sock
        self.host = host
        self.port = port

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def open(
        cls,
        host: str,
        port: str,
        timeout: float,
        bind_reserved: bool = True,
    ) -> "Connection":
        try:
            port_no = int(port)
        except ValueError:
            raise LinkError(f"setting port ({port!r})") from None

        family, socktype, proto, _, addr = socket.getaddrinfo(host, port_no, 0, socket.SOCK_STREAM)[0]
        sock = socket.socket(family, socktype, proto)
        try:
            if bind_reserved:
                local = _bind_reserved(sock, family)
                if local is None:
                    logger.debug("socket bound to an unprivileged port")
                else:
                    logger.debug("local port set to %d", local)

            start = time.monotonic()
            _connect_wait(sock, addr, timeout)
            elapsed = time.monotonic() - start

            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
            except OSError as exc:
                logger.info("setting SO_KEEPALIVE options (setsockopt): %s", exc)
        except BaseException:
            sock.close()
            raise

        logger.debug(
            "connected on %s:%s (local=%d) duration=%.2f second(s)",
            host,
            port,
            sock.getsockname()[1],
            elapsed,
        )
        return cls(sock, host, str(port))

    def send(self, data: bytes) -> int:
        return self.sock.send(data)

    def recv(self, bufsize: int) -> bytes:
        return self.sock.recv(bufsize)

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _bind_reserved(sock: socket.socket, family: int) -> Optional[int]:
    if family not in (socket.AF_INET, socket.AF_INET6):
        return None
    any_addr = "::" if family == socket.AF_INET6 else "0.0.0.0"
    for port in range(RESERVED_PORT_HIGH, RESERVED_PORT_LOW - 1, -1):
        try:
            sock.bind((any_addr, port))
            return port
        except PermissionError:
            return None
        except OSError:
            continue
    return None


def _connect_wait(sock: socket.socket, addr, timeout: float) -> None:
    sock.setblocking(False)
    try:
        err = sock.connect_ex(addr)
        if err in _IN_PROGRESS:
            _, writable, _ = select.select([], [sock], [], timeout)
            if not writable:
                raise TimeoutError(errno.ETIMEDOUT, f"connect timed out after {timeout}s")
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err:
            raise OSError(err, os.strerror(err))
    finally:
        sock.setblocking(True)


Opener = Callable[[str, str, float], Connection]


class Connector:
    """Connect to the first reachable host of a comma separated list.

    The candidates are shuffled, tried one after the other with a bounded
    connect timeout, and the whole list is retried ``try_count`` times with
    ``try_delay`` seconds between rounds. With ``reshuffle_each_round`` the
    order is drawn again for every round; otherwise a single shuffle is made
    per :meth:`connect` call.
    """

    def __init__(
        self,
        config: ClientConfig,
        opener: Optional[Opener] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.opener = opener or self._open
        self.sleep = sleep
        self.rng = rng or random.Random()

    def _open(self, host: str, port: str, timeout: float) -> Connection:
        return Connection.open(host, port, timeout, bind_reserved=self.config.bind_reserved_port)

    def candidates(self, hosts: str) -> list[str]:
        names = [h.strip() for h in hosts.split(",")]
        return [h for h in names if h][: self.config.max_hosts]

    def connect(self, hosts: str, port: str) -> Connection:
        candidates = self.candidates(hosts)
        if not candidates:
            raise ConnectError(candidates, port)

        order = list(candidates)
        self.rng.shuffle(order)
        rounds = self.config.try_count
        for round_no in range(1, rounds + 1):
            if round_no > 1 and self.config.reshuffle_each_round:
                self.rng.shuffle(order)
            for host in order:
                try:
                    return self.opener(host, port, self.config.connect_timeout)
                except OSError as exc:
                    logger.debug("connection failed to %s:%s (%s)", host, port, exc)
            if round_no < rounds:
                logger.debug(
                    "connect failed (%d/%d) - waiting for %s seconds",
                    round_no,
                    rounds,
                    self.config.try_delay,
                )
                self.sleep(self.config.try_delay)

        raise ConnectError(candidates, port)
