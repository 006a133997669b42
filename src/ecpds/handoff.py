from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Optional

from . import frame
from .constants import DEFAULT_BUFFER_SIZE, TRANSFER_FAILED, VERSION
from .errors import EcpdsError, LinkError, SourceError
from .net import Connector

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: str

    @property
    def label(self) -> str:
        return f"{self.host}:{self.port}"


def parse_endpoints(ecproxy: str) -> list[Endpoint]:
    """Split a ``host:port|host:port`` list; entries without a port are skipped."""
    endpoints = []
    for item in ecproxy.split("|"):
        host, sep, port = item.strip().rpartition(":")
        if not sep or not host or not port:
            logger.debug("ignoring data mover entry %r", item)
            continue
        endpoints.append(Endpoint(host=host, port=port))
    return endpoints


@dataclass(slots=True)
class Attempt:
    endpoint: Endpoint
    bytes_sent: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class TransferOutcome:
    succeeded: bool = False
    stats_line: str = TRANSFER_FAILED
    endpoint: Optional[Endpoint] = None
    attempts: list[Attempt] = field(default_factory=list)


@dataclass(slots=True)
class TransferHandoff:
    """Deliver one payload to the first data mover that accepts all of it.

    Movers are tried in the order the coordinator listed them, each through
    the connector with its own retry budget. A mover that fails at any step
    is dropped and the source is rewound for the next one.
    """

    connector: Connector
    target: str
    size: int
    source: Optional[BinaryIO] = None
    opts: Optional[str] = None
    buffer_size: int = DEFAULT_BUFFER_SIZE
    version: str = VERSION

    def run(self, ecproxy: str) -> TransferOutcome:
        outcome = TransferOutcome()
        for endpoint in parse_endpoints(ecproxy):
            logger.info("ecproxyHost=%s ecproxyPort=%s", endpoint.host, endpoint.port)
            attempt = Attempt(endpoint)
            outcome.attempts.append(attempt)
            self._rewind()
            try:
                stats = self._deliver(endpoint, attempt)
            except (EcpdsError, OSError) as exc:
                attempt.error = str(exc)
                logger.info("transfer to %s failed: %s", endpoint.label, exc)
                self._rewind()
                continue

            outcome.succeeded = True
            outcome.stats_line = stats
            outcome.endpoint = endpoint
            break

        if not outcome.succeeded:
            logger.info("no data mover accepted %s (%d tried)", self.target, len(outcome.attempts))
        return outcome

    def _rewind(self) -> None:
        if self.source is None:
            return
        try:
            self.source.seek(0)
        except OSError as exc:
            raise SourceError(f"repositioning source file offset: {exc}") from exc

    def _deliver(self, endpoint: Endpoint, attempt: Attempt) -> str:
        conn = self.connector.connect(endpoint.host, endpoint.port)
        try:
            frame.send_action(conn, f"ECPDS {self.version}")
            frame.send(conn, "OPTS", self.opts)
            frame.send(conn, "TARGET", self.target)
            frame.receive(conn, "CONNECT")
            frame.send_number(conn, "SIZE", self.size)

            attempt.bytes_sent = self._stream(conn)
            if attempt.bytes_sent != self.size:
                raise LinkError(f"transmission failed ({attempt.bytes_sent}/{self.size} byte(s))")

            stats = frame.receive(conn, "STAT")
            frame.receive(conn, "BYE")
            frame.send_action(conn, "BYE")
        finally:
            conn.close()
        logger.info("%d byte(s) sent to %s", attempt.bytes_sent, endpoint.label)
        return stats

    def _stream(self, conn: frame.Stream) -> int:
        if self.size <= 0 or self.source is None:
            logger.info("empty file")
            return 0

        chunk_size = min(self.buffer_size, self.size)
        if chunk_size < self.buffer_size:
            logger.debug("use small file buffer (%d)", chunk_size)

        sent = 0
        while True:
            chunk = self.source.read(chunk_size)
            if not chunk:
                break
            try:
                frame.write_fully(conn, chunk, "file content")
            except LinkError as exc:
                logger.debug("transmission aborted (%s)", exc)
                break
            sent += len(chunk)
        return sent
