from __future__ import annotations

import io
import logging

from conftest import ScriptedPeer, scripted_connector
from ecpds import frame
from ecpds.constants import TRANSFER_FAILED, VERSION
from ecpds.handoff import Endpoint, TransferHandoff, parse_endpoints

PAYLOAD = bytes(range(256)) * 3 + b"x" * 232  # 1000 bytes
STATS = "+(mover-b|1700000000000|120)"


def header_length(target: str, size: int) -> int:
    return (
        len(frame.encode(f"ECPDS {VERSION}"))
        + len(frame.encode("TARGET", target))
        + len(frame.encode("SIZE", str(size)))
    )


def accepting_mover() -> ScriptedPeer:
    return ScriptedPeer.replying("+CONNECT ok", f"+STAT {STATS}", "+BYE")


def test_parse_endpoints_splits_on_last_colon():
    assert parse_endpoints("m1:4000|m2.example.org:4001|::1:4002") == [
        Endpoint("m1", "4000"),
        Endpoint("m2.example.org", "4001"),
        Endpoint("::1", "4002"),
    ]
    assert parse_endpoints("noport|m3:1") == [Endpoint("m3", "1")]
    assert parse_endpoints("") == []


def test_short_write_rewinds_and_next_mover_succeeds():
    assert len(PAYLOAD) == 1000
    dropping = ScriptedPeer.replying("+CONNECT ok", accept=header_length("data.bin", 1000) + 800)
    good = accepting_mover()
    source = io.BytesIO(PAYLOAD)
    handoff = TransferHandoff(
        connector=scripted_connector({"mover-a": dropping, "mover-b": good}),
        target="data.bin",
        size=1000,
        source=source,
    )

    outcome = handoff.run("mover-a:4000|mover-b:4000")

    assert outcome.succeeded
    assert outcome.endpoint == Endpoint("mover-b", "4000")
    assert outcome.stats_line == STATS
    assert [a.succeeded for a in outcome.attempts] == [False, True]
    assert "transmission failed" in outcome.attempts[0].error
    assert good.sent.endswith(PAYLOAD + b"BYE\n")
    assert bytes(good.sent).count(PAYLOAD) == 1
    assert dropping.closed and good.closed


def test_handshake_lines_sent_to_mover():
    good = accepting_mover()
    handoff = TransferHandoff(
        connector=scripted_connector({"m": good}),
        target="/in/data.bin",
        size=len(PAYLOAD),
        source=io.BytesIO(PAYLOAD),
        opts="trace",
        buffer_size=64,
    )
    assert handoff.run("m:1").succeeded
    head = bytes(good.sent[: header_length("/in/data.bin", 1000) + len(b"OPTS trace\n")])
    assert head.decode().split("\n")[:4] == [
        f"ECPDS {VERSION}",
        "OPTS trace",
        "TARGET /in/data.bin",
        "SIZE 1000",
    ]


def test_first_success_stops_iteration():
    first, second = accepting_mover(), accepting_mover()
    handoff = TransferHandoff(
        connector=scripted_connector({"a": first, "b": second}),
        target="t",
        size=len(PAYLOAD),
        source=io.BytesIO(PAYLOAD),
    )
    outcome = handoff.run("a:1|b:1")
    assert outcome.endpoint == Endpoint("a", "1")
    assert len(outcome.attempts) == 1
    assert second.sent == b""


def test_all_movers_exhausted():
    refused = ScriptedPeer.replying("-target not accepted")
    handoff = TransferHandoff(
        connector=scripted_connector({"a": refused}),
        target="t",
        size=len(PAYLOAD),
        source=io.BytesIO(PAYLOAD),
    )
    outcome = handoff.run("a:1|unreachable:1")
    assert not outcome.succeeded
    assert outcome.stats_line == TRANSFER_FAILED
    assert outcome.endpoint is None
    assert "target not accepted" in outcome.attempts[0].error
    assert "connection failed" in outcome.attempts[1].error


def test_empty_file_skips_streaming():
    mover = accepting_mover()
    handoff = TransferHandoff(connector=scripted_connector({"m": mover}), target="t", size=0)
    outcome = handoff.run("m:1")
    assert outcome.succeeded
    assert bytes(mover.sent).endswith(b"SIZE 0\nBYE\n")


def test_missing_stat_rewinds_for_next_mover():
    no_stat = ScriptedPeer.replying("+CONNECT ok")
    good = accepting_mover()
    source = io.BytesIO(PAYLOAD)
    handoff = TransferHandoff(
        connector=scripted_connector({"a": no_stat, "b": good}),
        target="t",
        size=len(PAYLOAD),
        source=source,
    )
    outcome = handoff.run("a:1|b:1")
    assert outcome.endpoint == Endpoint("b", "1")
    assert outcome.attempts[0].bytes_sent == len(PAYLOAD)
    assert bytes(good.sent).count(PAYLOAD) == 1


def test_failover_is_quiet_at_default_level(caplog):
    caplog.set_level(logging.WARNING)
    handoff = TransferHandoff(
        connector=scripted_connector({"b": accepting_mover()}),
        target="t",
        size=len(PAYLOAD),
        source=io.BytesIO(PAYLOAD),
    )
    outcome = handoff.run("a:1|b:1")
    assert outcome.endpoint == Endpoint("b", "1")
    assert [r for r in caplog.records if r.levelno >= logging.WARNING] == []

    caplog.clear()
    caplog.set_level(logging.INFO)
    handoff.run("a:1")
    assert "transfer to a:1 failed" in caplog.text
