from __future__ import annotations

import logging
import os
import re
import selectors
import stat
import tempfile
import time
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .constants import DEFAULT_BUFFER_SIZE, STDIN_TIMEOUT
from .errors import ParameterError, SourceError

logger = logging.getLogger(__name__)

_SIZE = re.compile(r"\s*(\d+)\s*([kKmM]?)")


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: str
    original: str
    size: int  # -1 when unknown (named pipe)
    mtime: int
    index_count: Optional[int] = None

    def open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except OSError as exc:
            raise SourceError(f"opening source file: {exc}") from exc


def default_target(path: str) -> str:
    return os.path.basename(path) or path


def read_index(path: str) -> list[str]:
    """Return the file names listed in an index file, one per line."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except OSError as exc:
        raise SourceError(f"opening index file: {exc}") from exc
    return [line for line in lines if line and not line.startswith("#")]


def inspect_source(path: str, *, index: bool = False, groupby: Optional[str] = None) -> SourceFile:
    try:
        st = os.stat(path)
    except OSError as exc:
        raise SourceError(f"getting source file status (stat): {exc}") from exc

    resolved = os.path.realpath(path)
    mtime = int(st.st_mtime)

    if stat.S_ISFIFO(st.st_mode):
        if groupby is None:
            raise SourceError("named pipe supported in groupby mode only")
        if index:
            raise SourceError("index not supported with named pipe")
        return SourceFile(path=resolved, original=resolved, size=-1, mtime=mtime)

    if not index:
        return SourceFile(path=resolved, original=resolved, size=st.st_size, mtime=mtime)

    entries = read_index(resolved)
    if not entries:
        raise SourceError("no file(s) found in index")
    total = 0
    for name in entries:
        try:
            total += os.stat(name).st_size
        except OSError as exc:
            raise SourceError(f"getting {name} status (stat): {exc}") from exc

    if len(entries) == 1:
        logger.info("force source=%s", entries[0])
        return SourceFile(path=entries[0], original=entries[0], size=total, mtime=mtime)
    return SourceFile(path=resolved, original=resolved, size=total, mtime=mtime, index_count=len(entries))


def spool_stream(fd: int, timeout: float = STDIN_TIMEOUT, directory: Optional[str] = None) -> tuple[str, int]:
    """Copy everything readable from ``fd`` into a temporary file.

    The whole copy must complete within ``timeout`` seconds; otherwise the
    temporary file is removed and :class:`SourceError` is raised.
    """
    out_fd, path = tempfile.mkstemp(prefix="ecpds", dir=directory)
    deadline = time.monotonic() + timeout
    total = 0
    try:
        with os.fdopen(out_fd, "wb") as out, selectors.DefaultSelector() as sel:
            try:
                sel.register(fd, selectors.EVENT_READ)
                pollable = True
            except (OSError, ValueError):
                # regular files cannot be polled and never block
                pollable = False
            while True:
                if pollable:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0 or not sel.select(remaining):
                        raise SourceError("timeout occurred while reading from stdin")
                chunk = os.read(fd, DEFAULT_BUFFER_SIZE)
                if not chunk:
                    break
                out.write(chunk)
                total += len(chunk)
    except BaseException:
        os.unlink(path)
        raise
    logger.debug("%d bytes received from stdin", total)
    return path, total


def parse_size(text: str) -> int:
    m = _SIZE.fullmatch(text)
    if not m or int(m.group(1)) <= 0:
        raise ParameterError("size must be a positive integer")
    shift = {"k": 10, "m": 20}.get(m.group(2).lower(), 0)
    return int(m.group(1)) << shift


def check_size(size: int, exact: Optional[int] = None, maximum: Optional[int] = None) -> None:
    if exact is not None and maximum is not None:
        raise ParameterError("exact and maximum size are incompatible")
    if maximum is not None and size > maximum:
        raise SourceError("size of file exceeds maximum specified")
    if exact is not None and size != exact:
        raise SourceError("size of file differs from specified value")
