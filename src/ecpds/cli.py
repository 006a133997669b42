from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from typing import Optional

from .config import ClientConfig, Coordinator, default_caller
from .constants import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_PRIORITY,
    DEFAULT_TRY_COUNT,
    DEFAULT_TRY_DELAY,
    TRANSFER_FAILED,
    VERSION,
)
from .errors import EcpdsError, ParameterError
from .params import Mode, SessionParams
from .session import ClientIdentity, CoordinatorSession
from .source import SourceFile, check_size, default_target, inspect_source, parse_size, spool_stream

logger = logging.getLogger(__name__)

_VALUE_OPTIONS = (
    ("destination", "destination name"),
    ("source", "source file name (default: stdin)"),
    ("priority", f"transmission priority 0-99 (default: {DEFAULT_PRIORITY})"),
    ("metadata", "metadata(s) (param=value,...)"),
    ("target", "target file name (default: source file name)"),
    ("original", "original file name reported to the coordinator"),
    ("identity", "identity of the product (default: target file name)"),
    ("lifetime", "lifetime of the data file, e.g. 2d (default: 2d)"),
    ("delay", "transmission delay, e.g. 1h (default: immediate transfer)"),
    ("at", "transmission date (default: immediate transfer)"),
    ("format", "date format of --at (default: yyyyMMddHHmmss)"),
    ("group", "transfer group (default: random)"),
    ("version", "optional version associated with the data file"),
    ("reqid", "data file id for the requeue/purge options"),
    ("groupby", "organise transfers by groups"),
    ("waitfor", "wait for a group of preset files to be retrieved"),
    ("streams", "maximum number of retrieval streams (--scheduler --check)"),
    ("timeout", "timeout for each retrieval stream (--scheduler --check)"),
    ("buffer", "buffer duration for notifications"),
)

_FLAG_OPTIONS = (
    ("index", "in groupby mode the source file is an index of source files"),
    ("noretrieval", "file not retrieved in groupby mode (taken from source)"),
    ("expected", "notify that the task identified by the metadata is expected"),
    ("started", "notify that the task identified by the metadata is started"),
    ("completed", "notify that the task identified by the metadata is completed"),
    ("reset", "reset the task identified by the metadata"),
    ("asap", "send file as soon as all files of the group are retrieved"),
    ("event", "notification triggered once data is available"),
    ("remove", "remove source when transfer successful"),
    ("requeue", "requeue a data file and reset the related transfer(s)"),
    ("purge", "purge the data file and the related transfer(s)"),
    ("force", "force a requeue when a duplicate data file is found"),
    ("scheduler", "scheduler request (with --start, --stop or --check)"),
    ("start", "(re)start the scheduler or the specified destination"),
    ("stop", "graceful stop of the scheduler or the specified destination"),
    ("check", "check the scheduler"),
)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ecpds", description="Submit data files to an ECPDS coordinator.")
    p.add_argument("-v", action="version", version=f"ecpds version {VERSION}")

    for name, text in _VALUE_OPTIONS:
        p.add_argument(f"--{name}", help=text)
    for name, text in _FLAG_OPTIONS:
        p.add_argument(f"--{name}", action="store_true", help=text)
    p.add_argument("--standby", "--dontsend", dest="standby", action="store_true", help="spool the data file only")

    conn = p.add_argument_group("connection")
    conn.add_argument("--echost", help="comma separated host names of the coordinator")
    conn.add_argument("--ecport", help="port of the coordinator")
    conn.add_argument("--caller", help="caller id (default: $EC_job_stdout)")
    conn.add_argument("--opts", help="debug options sent to the servers")
    conn.add_argument("--connect-timeout", type=float, default=DEFAULT_CONNECT_TIMEOUT)
    conn.add_argument("--try-count", type=int, default=DEFAULT_TRY_COUNT)
    conn.add_argument("--try-delay", type=float, default=DEFAULT_TRY_DELAY)
    conn.add_argument("--buffsize", type=int, default=DEFAULT_BUFFER_SIZE)

    size = p.add_mutually_exclusive_group()
    size.add_argument("-s", "--size", help="exact size of the source file (e.g. 10k, 2m)")
    size.add_argument("-M", "--max-size", help="maximum size of the source file")

    p.add_argument("--verbose", action="store_true")
    p.add_argument("--debug", action="store_true")
    return p


def params_from_args(args: argparse.Namespace) -> SessionParams:
    fields = {f.name for f in dataclasses.fields(SessionParams)}
    return SessionParams(**{k: v for k, v in vars(args).items() if k in fields})


def prepare_source(params: SessionParams, exact: Optional[int], maximum: Optional[int]) -> tuple[SessionParams, SourceFile, Optional[str]]:
    """Locate (or spool) the payload; returns the completed params, the source and the spool path."""
    spooled = None
    path = params.source
    if path is None:
        if params.target is None:
            raise ParameterError("--target option is mandatory when expecting input from stdin")
        path, _ = spool_stream(sys.stdin.fileno())
        spooled = path
    try:
        source = inspect_source(path, index=params.index, groupby=params.groupby)
        check_size(source.size, exact, maximum)
    except BaseException:
        if spooled is not None:
            os.remove(spooled)
        raise
    if params.target is None:
        params = dataclasses.replace(params, target=default_target(path))
    logger.info("%d bytes to transfer", source.size)
    return params, source, spooled


def run(args: argparse.Namespace) -> int:
    params = params_from_args(args).validate()
    config = ClientConfig(
        connect_timeout=args.connect_timeout,
        try_count=args.try_count,
        try_delay=args.try_delay,
        buffer_size=args.buffsize,
    )
    coordinator = Coordinator.resolve(args.echost, args.ecport)
    caller = args.caller or default_caller()
    exact = parse_size(args.size) if args.size else None
    maximum = parse_size(args.max_size) if args.max_size else None

    source = None
    spooled = None
    if params.needs_source:
        params, source, spooled = prepare_source(params, exact, maximum)
    try:
        for key, value in sorted(dataclasses.asdict(params).items()):
            logger.info("%s=%s", key, value)
        identity = ClientIdentity.local(coordinator.requested)
        with CoordinatorSession(coordinator, config, identity, opts=args.opts, caller=caller) as session:
            result = session.run(params, source, on_update=print)
    finally:
        if spooled is not None:
            os.remove(spooled)

    if result.message is not None and result.mode is not Mode.WAIT_FOR_GROUP:
        print(result.message)
    if not result.ok:
        print(f"error: {TRANSFER_FAILED.lstrip('-')}", file=sys.stderr)
        return 1

    if params.remove and source is not None and spooled is None:
        try:
            os.remove(source.path)
        except OSError as exc:
            logger.warning("removing source %s: %s", source.path, exc)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    level = logging.DEBUG if args.debug else logging.INFO if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return run(args)
    except EcpdsError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
