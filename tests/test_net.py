from __future__ import annotations

import random
import socket

import pytest

from conftest import ScriptedPeer, quick_config
from ecpds.errors import ConnectError
from ecpds.net import Connection, Connector


class Recorder:
    def __init__(self, good=(), slow=()):
        self.good = set(good)
        self.slow = set(slow)
        self.attempts: list[str] = []

    def __call__(self, host: str, port: str, timeout: float):
        self.attempts.append(host)
        if host in self.slow:
            raise TimeoutError(f"{host} did not answer within {timeout}s")
        if host in self.good:
            return ScriptedPeer()
        raise ConnectionRefusedError(host)


@pytest.mark.parametrize("count", range(1, 11))
def test_every_host_tried_each_round(count):
    hosts = [f"h{i}" for i in range(count)]
    opener = Recorder()
    sleeps = []
    connector = Connector(quick_config(try_count=3), opener=opener, sleep=sleeps.append)

    with pytest.raises(ConnectError) as info:
        connector.connect(",".join(hosts), "2640")

    assert len(opener.attempts) == 3 * count
    for r in range(3):
        assert sorted(opener.attempts[r * count : (r + 1) * count]) == sorted(hosts)
    assert sleeps == [0.0, 0.0]
    assert info.value.hosts == hosts
    assert info.value.port == "2640"


def test_host_list_is_capped():
    hosts = ",".join(f"h{i}" for i in range(15))
    opener = Recorder()
    connector = Connector(quick_config(try_count=2), opener=opener, sleep=lambda s: None)
    with pytest.raises(ConnectError):
        connector.connect(hosts, "2640")
    assert len(opener.attempts) == 20
    assert set(opener.attempts) == {f"h{i}" for i in range(10)}


@pytest.mark.parametrize("seed", range(20))
def test_failover_past_unresponsive_host(seed):
    opener = Recorder(good={"good"}, slow={"slow"})
    connector = Connector(quick_config(try_count=6), opener=opener, rng=random.Random(seed))
    conn = connector.connect("slow,good", "2640")
    assert isinstance(conn, ScriptedPeer)
    assert opener.attempts[-1] == "good"
    assert len(opener.attempts) <= 2


def test_single_shuffle_when_reshuffle_disabled():
    opener = Recorder()
    connector = Connector(
        quick_config(try_count=4, reshuffle_each_round=False),
        opener=opener,
        sleep=lambda s: None,
        rng=random.Random(7),
    )
    with pytest.raises(ConnectError):
        connector.connect("a,b,c,d,e", "1")
    first = opener.attempts[:5]
    assert opener.attempts == first * 4


def test_blank_entries_ignored():
    connector = Connector(quick_config())
    assert connector.candidates(" a, ,b,,c ") == ["a", "b", "c"]
    with pytest.raises(ConnectError):
        connector.connect(" , ", "2640")


def test_open_real_connection():
    srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    srv.bind(("127.0.0.1", 0))
    srv.listen(1)
    port = str(srv.getsockname()[1])
    with srv:
        conn = Connection.open("127.0.0.1", port, 2.0, bind_reserved=False)
        with conn:
            assert conn.label == f"127.0.0.1:{port}"
            assert conn.sock.getblocking()
            assert conn.sock.getsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE)
            peer, _ = srv.accept()
            with peer:
                conn.send(b"USER me\n")
                assert peer.recv(64) == b"USER me\n"


def test_refused_port_exhausts_rounds():
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = str(probe.getsockname()[1])
    probe.close()

    connector = Connector(quick_config(try_count=2), sleep=lambda s: None)
    with pytest.raises(ConnectError) as info:
        connector.connect("127.0.0.1", port)
    assert "127.0.0.1" in str(info.value)
