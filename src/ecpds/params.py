from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Optional

from .errors import ParameterError

_LEADING_INT = re.compile(r"\s*([+-]?[0-9]+)")
_PRIORITY = re.compile(r"\s*[+-]?[0-9]+\s*")


class Mode(enum.Enum):
    NOTIFY = "notify"
    SCHEDULER = "scheduler"
    WAIT_FOR_GROUP = "waitfor"
    SUBMIT = "submit"


class Notification(enum.Enum):
    EXPECTED = "EXPECTED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    RESET = "RESET"


def _leading_int(text: str) -> int:
    # "2d" -> 2, "abc" -> 0
    m = _LEADING_INT.match(text)
    return int(m.group(1)) if m else 0


@dataclass(frozen=True, slots=True)
class SessionParams:
    """Everything one invocation asks of the coordinator.

    Built once by the command line and never modified; :meth:`validate` is
    called before any connection is made.
    """

    destination: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    original: Optional[str] = None
    priority: Optional[str] = None
    lifetime: Optional[str] = None
    delay: Optional[str] = None
    at: Optional[str] = None
    format: Optional[str] = None
    metadata: Optional[str] = None
    group: Optional[str] = None
    groupby: Optional[str] = None
    reqid: Optional[str] = None
    version: Optional[str] = None
    identity: Optional[str] = None
    buffer: Optional[str] = None
    waitfor: Optional[str] = None
    streams: Optional[str] = None
    timeout: Optional[str] = None
    standby: bool = False
    asap: bool = False
    event: bool = False
    remove: bool = False
    force: bool = False
    requeue: bool = False
    purge: bool = False
    index: bool = False
    noretrieval: bool = False
    expected: bool = False
    started: bool = False
    completed: bool = False
    reset: bool = False
    scheduler: bool = False
    start: bool = False
    stop: bool = False
    check: bool = False

    @property
    def notification(self) -> Optional[Notification]:
        # same precedence as the verbs are checked on the wire
        if self.completed:
            return Notification.COMPLETED
        if self.expected:
            return Notification.EXPECTED
        if self.reset:
            return Notification.RESET
        if self.started:
            return Notification.STARTED
        return None

    @property
    def mode(self) -> Mode:
        if self.notification is not None:
            return Mode.NOTIFY
        if self.scheduler:
            return Mode.SCHEDULER
        if self.waitfor is not None:
            return Mode.WAIT_FOR_GROUP
        return Mode.SUBMIT

    @property
    def expects_transfer(self) -> bool:
        """True when a PUT is answered with transfer endpoints."""
        return self.mode is Mode.SUBMIT and not self.purge and self.groupby is None

    @property
    def needs_source(self) -> bool:
        return self.mode is Mode.SUBMIT and not self.purge

    def validate(self) -> "SessionParams":
        notifications = sum((self.expected, self.started, self.completed, self.reset))
        if notifications > 1:
            raise ParameterError("--expected, --started, --completed and --reset are incompatible")
        modes = sum((notifications > 0, self.scheduler, self.waitfor is not None))
        if modes > 1:
            raise ParameterError("--waitfor, --scheduler and notifications are incompatible")

        if self.noretrieval and not self.groupby:
            raise ParameterError("--noretrieval can only be used with --groupby")
        if not self.scheduler and (self.start or self.stop or self.check):
            raise ParameterError("--start, --stop and --check are only valid with --scheduler")
        if not (self.scheduler and self.check) and (self.timeout is not None or self.streams is not None):
            raise ParameterError("--timeout and --streams are only valid with '--scheduler --check'")
        if sum((self.start, self.stop, self.check)) > 1:
            raise ParameterError("--start, --stop, and --check are incompatible")
        if self.scheduler and not (self.start or self.stop or self.check):
            raise ParameterError("--scheduler requires --start, --stop, or --check")
        if self.force and self.requeue:
            raise ParameterError("--force and --requeue are incompatible")
        if self.groupby and self.remove:
            raise ParameterError("--groupby and --remove are incompatible")
        if self.index and not self.groupby:
            raise ParameterError("--index is only available with --groupby")
        if self.purge and (self.force or self.requeue):
            raise ParameterError("--force and --requeue are incompatible with --purge")

        if self.priority is not None:
            if not _PRIORITY.fullmatch(self.priority) or not 0 <= int(self.priority) <= 99:
                raise ParameterError("--priority must be in 0..99")
        if self.lifetime is not None and _leading_int(self.lifetime) <= 0:
            raise ParameterError("--lifetime must be a positive integer")
        if self.delay is not None and _leading_int(self.delay) <= 0:
            raise ParameterError("--delay must be a positive integer")
        if self.buffer is not None and _leading_int(self.buffer) < 0:
            raise ParameterError("--buffer must be a positive or null integer")
        return self
