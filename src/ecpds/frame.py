"""Line codec shared by the control and data connections.

Every frame is one newline-terminated line:

    KEY VALUE\\n    command with a payload
    KEY\\n          bare action
    +REST\\n        success reply (REST is usually ``KEY VALUE``)
    -REASON\\n      failure reply

There is no length prefix, so a value can never contain a newline and a line
can never exceed ``MAX_LINE_LENGTH`` bytes.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .constants import MAX_LINE_LENGTH
from .errors import LinkError, ProtocolError, RemoteError

logger = logging.getLogger(__name__)


class Stream(Protocol):
    def send(self, data: bytes) -> int: ...

    def recv(self, bufsize: int) -> bytes: ...


def encode(key: str, value: Optional[str] = "") -> bytes:
    """Return the wire form of one command, or ``b""`` when there is nothing to send.

    A ``None`` value marks an absent optional field. An empty value gives a
    bare action.
    """
    if value is None or (not key and not value):
        return b""
    if "\n" in key or "\n" in value:
        raise ProtocolError(f"sending {key} to server (embedded newline)")
    line = f"{key} {value}\n" if value else f"{key}\n"
    data = line.encode("utf-8")
    if len(data) >= MAX_LINE_LENGTH:
        raise ProtocolError(f"sending {key} to server (buffer overflow)")
    return data


def decode(line: str, expected_key: Optional[str] = None) -> str:
    """Interpret one received line (without its newline)."""
    if line.startswith("-"):
        raise RemoteError(line[1:])
    text = line[1:] if line.startswith("+") else line
    if expected_key:
        if text.startswith(expected_key + " "):
            return text[len(expected_key) + 1 :]
        if text == expected_key:
            return ""
    return text


def write_fully(conn: Stream, data: bytes, what: str = "data") -> int:
    view = memoryview(data)
    sent = 0
    while sent < len(data):
        try:
            n = conn.send(view[sent:])
        except OSError as exc:
            raise LinkError(f"sending {what} to server (write): {exc}") from exc
        if n <= 0:
            raise LinkError(f"sending {what} to server (write)")
        sent += n
    return sent


def send(conn: Stream, key: str, value: Optional[str] = "") -> None:
    data = encode(key, value)
    if not data:
        return
    logger.debug("write %s", data.decode("utf-8", "replace").rstrip("\n"))
    write_fully(conn, data, key)


def send_action(conn: Stream, key: str) -> None:
    send(conn, key, "")


def send_flag(conn: Stream, key: str, cond: bool) -> None:
    if cond:
        send(conn, key, "true")


def send_number(conn: Stream, key: str, value: int) -> None:
    send(conn, key, str(value))


def read_line(conn: Stream) -> str:
    """Read one raw line byte by byte, without interpreting ``+``/``-``."""
    buf = bytearray()
    while True:
        try:
            b = conn.recv(1)
        except OSError as exc:
            raise LinkError(f"receiving message from server (read): {exc}") from exc
        if not b:
            raise LinkError("receiving message from server (connection closed)")
        if b == b"\n":
            break
        buf += b
        if len(buf) >= MAX_LINE_LENGTH:
            raise ProtocolError("receiving message from server (buffer overflow)")
    line = buf.decode("utf-8", "replace")
    logger.debug("read %d byte(s) [%s]", len(buf) + 1, line)
    return line


def receive(conn: Stream, expected_key: Optional[str] = None) -> str:
    return decode(read_line(conn), expected_key)
