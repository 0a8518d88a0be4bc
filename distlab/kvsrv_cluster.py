"""A test harness that runs one key/value server behind a simulated network."""

from __future__ import annotations

import base64
import secrets
import threading
import time

from distlab.kvsrv import Clerk, start_kv_server
from distlab.labrpc import Network, Server, Service

SERVER_ID = 0
TIME_LIMIT = 120.0


def _randstring(n: int) -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(2 * n)).decode("ascii")[:n]


class Cluster:
    """A server, a network and any number of clerks, with run statistics."""

    def __init__(self, unreliable: bool = False):
        self._lock = threading.Lock()
        self.net = Network()
        self.kvserver = None
        self._clerks: dict[Clerk, str] = {}
        self._next_client_id = SERVER_ID + 1
        self._start = time.monotonic()
        self._t0 = self._start
        self._rpcs0 = 0
        self._ops = 0
        self._ops_lock = threading.Lock()
        self.start_server()
        self.net.reliable(not unreliable)

    def __enter__(self) -> "Cluster":
        return self

    def __exit__(self, *args) -> None:
        if args and args[0] is not None:
            self.net.cleanup()
        else:
            self.cleanup()

    @property
    def ops(self) -> int:
        """Clerk operations counted since :meth:`begin`."""
        with self._ops_lock:
            return self._ops

    def check_timeout(self) -> None:
        """Raise TimeoutError once the cluster has existed for two minutes."""
        if time.monotonic() - self._start > TIME_LIMIT:
            raise TimeoutError("test took longer than 120 seconds")

    def cleanup(self) -> None:
        """Shut the network down."""
        with self._lock:
            self.net.cleanup()
        self.check_timeout()

    def make_client(self) -> Clerk:
        """Create a clerk with its own end-point to the server, enabled."""
        with self._lock:
            endname = _randstring(20)
            end = self.net.make_end(endname)
            self.net.connect(endname, SERVER_ID)
            clerk = Clerk(end)
            self._clerks[clerk] = endname
            self._next_client_id += 1
            self._connect_client_locked(clerk)
            return clerk

    def delete_client(self, clerk: Clerk) -> None:
        """Remove a clerk's end-point from the network."""
        with self._lock:
            endname = self._clerks.pop(clerk)
            self.net.delete_end(endname)

    def _connect_client_locked(self, clerk: Clerk) -> None:
        self.net.enable(self._clerks[clerk], True)

    def connect_client(self, clerk: Clerk) -> None:
        """Enable a clerk's end-point."""
        with self._lock:
            self._connect_client_locked(clerk)

    def start_server(self) -> None:
        """Start a fresh server and attach it to the network."""
        self.kvserver = start_kv_server()
        server = Server()
        server.add_service(Service(self.kvserver))
        self.net.add_server(SERVER_ID, server)

    def rpc_total(self) -> int:
        """Number of RPCs sent so far."""
        return self.net.get_total_count()

    def begin(self, description: str) -> None:
        """Announce a test and reset its statistics."""
        print(f"{description} ...")
        self._t0 = time.monotonic()
        self._rpcs0 = self.rpc_total()
        with self._ops_lock:
            self._ops = 0

    def op(self) -> None:
        """Count one clerk operation."""
        with self._ops_lock:
            self._ops += 1

    def end(self) -> None:
        """Report that the test passed, with time, RPC and operation counts."""
        self.check_timeout()
        elapsed = time.monotonic() - self._t0
        nrpc = self.rpc_total() - self._rpcs0
        print("  ... Passed --", end="")
        print(f" t {elapsed:4.1f} nrpc {nrpc:5d} ops {self.ops:4d}")