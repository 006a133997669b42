"""Control session with the coordinator.

    CONNECTING -> HANDSHAKING -> NOTIFYING | SCHEDULER_CONTROL
                                | WAITING_FOR_GROUP | SUBMITTING -> CLOSED

Any failure on the control connection unwinds the whole session; only the
data movers of a submission are allowed to fail over.
"""

from __future__ import annotations

import enum
import getpass
import logging
import os
import socket
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from . import frame
from .config import ClientConfig, Coordinator
from .constants import QUIT, TRANSFER_FAILED, VERSION
from .errors import EcpdsError, LinkError, RemoteError
from .handoff import TransferHandoff, TransferOutcome
from .net import Connection, Connector
from .params import Mode, SessionParams
from .source import SourceFile

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    HANDSHAKING = "handshaking"
    NOTIFYING = "notifying"
    SCHEDULER_CONTROL = "scheduler-control"
    WAITING_FOR_GROUP = "waiting-for-group"
    SUBMITTING = "submitting"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class ClientIdentity:
    user: str
    node: str
    pid: int
    requested: str = "[default]"
    version: str = VERSION

    @classmethod
    def local(cls, requested: str = "[default]") -> "ClientIdentity":
        try:
            user = getpass.getuser()
        except (KeyError, OSError) as exc:
            raise EcpdsError(f"getting password file entry: {exc}") from exc
        try:
            node = socket.gethostname()
        except OSError:
            node = "[unknown]"
        return cls(user=user, node=node, pid=os.getpid(), requested=requested)

    def banner(self) -> str:
        return (
            f"{self.version} (cmd=ecpds,node={self.node},user={self.user},"
            f"pid={self.pid},req={self.requested})"
        )


@dataclass(slots=True)
class SubmitResult:
    target: str
    message: str
    outcome: Optional[TransferOutcome] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is None or self.outcome.succeeded


@dataclass(slots=True)
class SessionResult:
    mode: Mode
    message: Optional[str] = None
    submission: Optional[SubmitResult] = None
    updates: int = 0

    @property
    def ok(self) -> bool:
        return self.submission is None or self.submission.succeeded


class CoordinatorSession:
    def __init__(
        self,
        coordinator: Coordinator,
        config: ClientConfig,
        identity: ClientIdentity,
        *,
        opts: Optional[str] = None,
        caller: Optional[str] = None,
        connector: Optional[Connector] = None,
    ):
        self.coordinator = coordinator
        self.config = config
        self.identity = identity
        self.opts = opts
        self.caller = caller
        self.connector = connector or Connector(config)
        self.state = SessionState.CONNECTING
        self.conn: Optional[Connection] = None
        self.welcome: Optional[str] = None

    def __enter__(self) -> "CoordinatorSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self.state = SessionState.CLOSED

    def open(self) -> str:
        """Connect to the coordinator and authenticate; returns the welcome message."""
        if self.state is not SessionState.CONNECTING:
            raise EcpdsError(f"cannot open a session that is {self.state.value}")
        logger.info("echost=%s ecport=%s", self.coordinator.hosts, self.coordinator.port)
        self.conn = self.connector.connect(self.coordinator.hosts, self.coordinator.port)

        self.state = SessionState.HANDSHAKING
        frame.send(self.conn, "VERSION", self.identity.banner())
        frame.send(self.conn, "USER", self.identity.user)
        frame.send(self.conn, "OPTS", self.opts)
        frame.send(self.conn, "CALLER", self.caller)
        self.welcome = frame.receive(self.conn, "MESSAGE")
        logger.info("%s", self.welcome)
        return self.welcome

    def _enter(self, state: SessionState) -> Connection:
        if self.state is not SessionState.HANDSHAKING or self.welcome is None or self.conn is None:
            raise EcpdsError(f"session is {self.state.value}, handshake required")
        self.state = state
        return self.conn

    def notify(self, params: SessionParams) -> str:
        notification = params.notification
        if notification is None:
            raise EcpdsError("no notification requested")
        conn = self._enter(SessionState.NOTIFYING)
        frame.send(conn, "BUFFER", params.buffer)
        frame.send(conn, "METADATA", params.metadata)
        frame.send(conn, "AT", params.at)
        frame.send_action(conn, notification.value)
        return frame.receive(conn, "MESSAGE")

    def scheduler(self, params: SessionParams) -> str:
        conn = self._enter(SessionState.SCHEDULER_CONTROL)
        if params.start or params.stop:
            if params.destination is None:
                frame.send_action(conn, "SCHEDULERSTART" if params.start else "SCHEDULERSTOP")
            else:
                frame.send(conn, "DESTINATION", params.destination)
                frame.send_action(conn, "DESTINATIONSTART" if params.start else "DESTINATIONSTOP")
        else:
            frame.send(conn, "STREAMS", params.streams)
            frame.send(conn, "TIMEOUT", params.timeout)
            frame.send_action(conn, "SCHEDULERCHECK")
        return frame.receive(conn, "MESSAGE")

    def wait_for_group(self, group: str, on_update: Callable[[str], None] = print) -> int:
        """Relay progress lines until the coordinator ends the wait; returns the count."""
        conn = self._enter(SessionState.WAITING_FOR_GROUP)
        frame.send(conn, "WAITFORGROUP", group)
        logger.debug("receiving update")
        updates = 0
        while True:
            try:
                line = frame.read_line(conn)
            except LinkError:
                logger.debug("exiting without acknowledgement")
                raise
            if line.startswith("-"):
                raise RemoteError(line[1:])
            if line.startswith(QUIT):
                return updates
            on_update(line[1:] if line.startswith("+") else line)
            updates += 1

    def submit(
        self,
        params: SessionParams,
        source: Optional[SourceFile] = None,
        payload: Optional[BinaryIO] = None,
    ) -> SubmitResult:
        conn = self._enter(SessionState.SUBMITTING)
        size = source.size if source is not None else -1

        frame.send(conn, "DESTINATION", params.destination)
        frame.send_number(conn, "TIMEFILE", source.mtime if source is not None else 0)
        frame.send(conn, "FORMAT", params.format)
        if source is not None and source.index_count:
            frame.send_number(conn, "INDEX", source.index_count)
        frame.send(conn, "GROUP", params.group)
        frame.send(conn, "REQID", params.reqid)
        frame.send(conn, "PRIORITY", params.priority)
        frame.send(conn, "UNIQUENAME", params.version)
        frame.send(conn, "IDENTITY", params.identity)
        frame.send(conn, "ORIGINAL", params.original or (source.original if source is not None else None))
        frame.send(conn, "SOURCE", source.path if source is not None else None)
        frame.send(conn, "TARGET", params.target)
        frame.send(conn, "LIFETIME", params.lifetime)
        frame.send(conn, "DELAY", params.delay)
        frame.send(conn, "AT", params.at)
        frame.send(conn, "METADATA", params.metadata)
        if size >= 0:
            frame.send_number(conn, "SIZE", size)
        frame.send(conn, "GROUPBY", params.groupby)
        frame.send_flag(conn, "NORETRIEVAL", params.noretrieval)
        frame.send_flag(conn, "FORCE", params.force)
        frame.send_flag(conn, "REQUEUE", params.requeue)
        frame.send_flag(conn, "STANDBY", params.standby)
        frame.send_flag(conn, "ASAP", params.asap)
        frame.send_flag(conn, "EVENT", params.event)
        frame.send_flag(conn, "REMOVE", params.remove)
        frame.send_flag(conn, "PURGE", params.purge)
        frame.send_action(conn, "PUT")

        if not params.expects_transfer:
            return SubmitResult(target=params.target or "", message=frame.receive(conn, "MESSAGE"))

        target = frame.receive(conn, "TARGET")
        ecproxy = frame.receive(conn, "ECPROXY")
        frame.receive(conn, "MESSAGE")
        logger.info("new target=%s", target)

        try:
            if payload is None and source is not None and size > 0:
                with source.open() as f:
                    outcome = self._handoff(target, ecproxy, max(size, 0), f)
            else:
                outcome = self._handoff(target, ecproxy, max(size, 0), payload)
        except (EcpdsError, OSError):
            self._report(conn, TRANSFER_FAILED)
            raise

        self._report(conn, outcome.stats_line)
        message = frame.receive(conn, "MESSAGE")
        return SubmitResult(target=target, message=message, outcome=outcome)

    def _report(self, conn: Connection, stats: str) -> None:
        frame.send(conn, "HOST", stats)
        frame.send_action(conn, "BYE")

    def _handoff(self, target: str, ecproxy: str, size: int, payload: Optional[BinaryIO]) -> TransferOutcome:
        handoff = TransferHandoff(
            connector=self.connector,
            target=target,
            size=size,
            source=payload,
            opts=self.opts,
            buffer_size=self.config.buffer_size,
        )
        return handoff.run(ecproxy)

    def run(
        self,
        params: SessionParams,
        source: Optional[SourceFile] = None,
        on_update: Callable[[str], None] = print,
    ) -> SessionResult:
        """Open the session and perform the single mode ``params`` asks for."""
        params.validate()
        self.open()
        mode = params.mode
        if mode is Mode.NOTIFY:
            return SessionResult(mode, message=self.notify(params))
        if mode is Mode.SCHEDULER:
            return SessionResult(mode, message=self.scheduler(params))
        if mode is Mode.WAIT_FOR_GROUP and params.waitfor is not None:
            return SessionResult(mode, updates=self.wait_for_group(params.waitfor, on_update))
        submission = self.submit(params, source)
        return SessionResult(mode, message=submission.message, submission=submission)
