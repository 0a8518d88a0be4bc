import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pytest

from distlab.labrpc import ClientEnd, Network, RPCError, Server, Service


@dataclass
class JunkArgs:
    x: int = 0


@dataclass
class JunkReply:
    x: str = ""


class JunkServer:
    def __init__(self):
        self.mu = threading.Lock()
        self.log1 = []
        self.log2 = []
        self.release = threading.Event()

    def handler1(self, args):
        with self.mu:
            self.log1.append(args)
            return int(args)

    def handler2(self, args):
        with self.mu:
            self.log2.append(args)
            return "handler2-" + str(args)

    def handler3(self, args):
        with self.mu:
            self.release.wait(20)
            return -args

    def handler4(self, args):
        return JunkReply(x="pointer")

    def handler5(self, args):
        return JunkReply(x="no pointer")

    def handler6(self, args):
        with self.mu:
            return len(args)

    def handler7(self, args):
        with self.mu:
            return "y" * args

    def _hidden(self, args):
        return args

    def two_args(self, a, b):
        return a


@pytest.fixture
def net():
    network = Network()
    try:
        yield network
    finally:
        network.cleanup()


def _serve(net, servername, endname="end1-99", enable=True):
    js = JunkServer()
    server = Server()
    server.add_service(Service(js))
    net.add_server(servername, server)
    end = net.make_end(endname)
    net.connect(endname, servername)
    if enable:
        net.enable(endname, True)
    return js, end


def test_basic(net):
    _, end = _serve(net, "server99")
    assert end.call("JunkServer.handler2", 111) == "handler2-111"
    assert end.call("JunkServer.handler1", "9099") == 9099


def test_types(net):
    _, end = _serve(net, "server99")
    assert end.call("JunkServer.handler4", JunkArgs()) == JunkReply(x="pointer")
    assert end.call("JunkServer.handler5", JunkArgs()).x == "no pointer"


def test_disconnect(net):
    js, end = _serve(net, "server99", enable=False)
    with pytest.raises(RPCError):
        end.call("JunkServer.handler2", 111)
    assert js.log2 == []

    net.enable("end1-99", True)
    assert end.call("JunkServer.handler1", "9099") == 9099


def test_counts(net):
    _, end = _serve(net, 99)
    for i in range(17):
        assert end.call("JunkServer.handler2", i) == f"handler2-{i}"
    assert net.get_count(99) == 17
    assert net.get_total_count() == 17


def test_bytes(net):
    _, end = _serve(net, 99)
    args = "x" * 72
    args = args + args
    args = args + args
    for _ in range(17):
        assert end.call("JunkServer.handler6", args) == len(args)

    n = net.get_total_bytes()
    assert 4828 <= n <= 6000

    for _ in range(17):
        assert len(end.call("JunkServer.handler7", 107)) == 107

    nn = net.get_total_bytes() - n
    assert 1800 <= nn <= 2500


def test_concurrent_many(net):
    js = JunkServer()
    server = Server()
    server.add_service(Service(js))
    net.add_server(1000, server)

    nclients, nrpcs = 20, 10

    def client(i):
        end = net.make_end(i)
        net.connect(i, 1000)
        net.enable(i, True)
        done = 0
        for j in range(nrpcs):
            arg = i * 100 + j
            assert end.call("JunkServer.handler2", arg) == f"handler2-{arg}"
            done += 1
        return done

    with ThreadPoolExecutor(max_workers=nclients) as pool:
        total = sum(pool.map(client, range(nclients)))

    assert total == nclients * nrpcs
    assert net.get_count(1000) == total


def test_concurrent_one(net):
    js, end = _serve(net, 1000, endname="c")
    nrpcs = 20

    def client(i):
        arg = 100 + i
        assert end.call("JunkServer.handler2", arg) == f"handler2-{arg}"
        return 1

    with ThreadPoolExecutor(max_workers=nrpcs) as pool:
        total = sum(pool.map(client, range(nrpcs)))

    assert total == nrpcs
    assert len(js.log2) == nrpcs
    assert net.get_count(1000) == total


def test_regression1(net):
    js, end = _serve(net, 1000, endname="c", enable=False)

    def disabled_call(i):
        try:
            end.call("JunkServer.handler2", 100 + i)
        except RPCError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=20) as pool:
        futures = [pool.submit(disabled_call, i) for i in range(20)]
        time.sleep(0.1)

        t0 = time.monotonic()
        net.enable("c", True)
        assert end.call("JunkServer.handler2", 99) == "handler2-99"
        duration = time.monotonic() - t0
        assert duration < 0.05

        results = [future.result() for future in futures]

    assert not any(results)
    assert js.log2 == [99]
    assert net.get_count(1000) == 1


def test_killed(net):
    js, end = _serve(net, "server99")
    try:
        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(end.call, "JunkServer.handler3", 99)
            time.sleep(1.0)
            assert not future.done()
            time.sleep(0.1)
            assert not future.done()

            net.delete_server("server99")
            error = future.exception(timeout=0.5)
            assert isinstance(error, RPCError)
    finally:
        js.release.set()


def test_benchmark(net):
    _, end = _serve(net, "server99")
    replies = [end.call("JunkServer.handler2", 111) for _ in range(1000)]
    assert replies == ["handler2-111"] * 1000


def test_make_end_twice_raises(net):
    net.make_end("dup")
    with pytest.raises(ValueError):
        net.make_end("dup")


def test_delete_end(net):
    end = net.make_end("gone")
    assert end.endname == "gone"
    net.delete_end("gone")
    with pytest.raises(KeyError):
        net.delete_end("gone")
    again = net.make_end("gone")
    assert again.endname == "gone"


def test_unknown_service_and_method(net):
    _, end = _serve(net, "server99")
    with pytest.raises(LookupError):
        end.call("NoSuch.handler2", 1)
    with pytest.raises(LookupError):
        end.call("JunkServer.no_such", 1)
    with pytest.raises(LookupError):
        end.call("JunkServer._hidden", 1)
    with pytest.raises(LookupError):
        end.call("JunkServer.two_args", 1)


def test_service_name():
    assert Service(JunkServer()).name == "JunkServer"


def test_call_after_cleanup_fails():
    network = Network()
    _, end = _serve(network, "server99")
    assert end.call("JunkServer.handler2", 5) == "handler2-5"
    network.cleanup()
    with pytest.raises(RPCError):
        end.call("JunkServer.handler2", 6)


def test_get_count_without_server(net):
    with pytest.raises(KeyError):
        net.get_count("missing")


def test_server_get_count_direct(net):
    js = JunkServer()
    server = Server()
    server.add_service(Service(js))
    net.add_server("s", server)
    end = net.make_end("e")
    net.connect("e", "s")
    net.enable("e", True)
    end.call("JunkServer.handler2", 1)
    end.call("JunkServer.handler2", 2)
    assert server.get_count() == 2


def test_client_end_type(net):
    end = net.make_end("typed")
    assert isinstance(end, ClientEnd) and end.endname == "typed"


def test_delete_server_makes_calls_fail(net):
    _, end = _serve(net, "server99")
    assert end.call("JunkServer.handler2", 3) == "handler2-3"
    net.delete_server("server99")
    with pytest.raises(RPCError):
        end.call("JunkServer.handler2", 4)