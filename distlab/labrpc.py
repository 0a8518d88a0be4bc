"""An in-process RPC network that can lose, delay and reorder messages.

A :class:`Network` holds client end-points and servers. Each end-point
talks to one server and can be enabled or disabled. When the network is
unreliable, requests and replies are sometimes dropped. Every message is
passed through :mod:`distlab.labgob`, so caller and handler never share
objects.

Typical use::

    net = Network()
    end = net.make_end("client-0")
    server = Server()
    server.add_service(Service(raft))
    net.add_server(0, server)
    net.connect("client-0", 0)
    net.enable("client-0", True)
    reply = end.call("Raft.append_entries", args)

A handler is any public method of the receiver that takes exactly one
argument. It returns the reply. :meth:`ClientEnd.call` returns the decoded
reply, or raises :class:`RPCError` when no reply arrived.
"""

from __future__ import annotations

import inspect
import io
import queue
import random
import threading
import time
from typing import Any, Callable, Hashable, Optional

from distlab.labgob import LabDecoder, LabEncoder

_POLL_INTERVAL = 0.1
_VARIADIC_FLAGS = inspect.CO_VARARGS | inspect.CO_VARKEYWORDS


class RPCError(Exception):
    """No reply was received: the request or reply was lost, or the server is down."""


def _encode(value: Any) -> bytes:
    buffer = io.BytesIO()
    LabEncoder(buffer).encode(value)
    return buffer.getvalue()


def _decode(data: bytes) -> Any:
    return LabDecoder(io.BytesIO(data)).decode()


def _is_handler(function: Any) -> bool:
    """True for a plain method taking ``self`` and exactly one positional argument."""
    code = getattr(function, "__code__", None)
    if code is None:
        return False
    return (
        code.co_argcount == 2
        and code.co_kwonlyargcount == 0
        and not code.co_flags & _VARIADIC_FLAGS
    )


class ClientEnd:
    """A client end-point that sends RPCs to the one server it is connected to."""

    def __init__(self, network: "Network", endname: Hashable):
        self._network = network
        self.endname = endname

    def call(self, svc_meth: str, args: Any) -> Any:
        """Send an RPC such as ``"Raft.append_entries"`` and wait for the reply.

        Returns the decoded reply. Raises :class:`RPCError` if no reply
        was received. Errors raised by an unknown service or method, or by
        the handler itself, are raised here.
        """
        payload = _encode(args)
        if self._network._done.is_set():
            raise RPCError("network has been cleaned up")
        reply = self._network._process(self.endname, svc_meth, payload)
        return _decode(reply)

    def __repr__(self) -> str:
        return f"ClientEnd({self.endname!r})"


class Network:
    """Holds end-points and servers, and routes requests between them."""

    def __init__(self):
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._ends: dict[Any, ClientEnd] = {}
        self._enabled: dict[Any, bool] = {}
        self._servers: dict[Any, Optional[Server]] = {}
        self._connections: dict[Any, Any] = {}
        self._done = threading.Event()
        self._count = 0
        self._bytes = 0

    def __enter__(self) -> "Network":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    def cleanup(self) -> None:
        """Shut the network down; later calls fail at once."""
        self._done.set()

    def reliable(self, yes: bool) -> None:
        """When False, requests and replies are delayed and sometimes dropped."""
        with self._lock:
            self._reliable = yes

    def long_reordering(self, yes: bool) -> None:
        """When True, replies are sometimes held back for a long while."""
        with self._lock:
            self._long_reordering = yes

    def long_delays(self, yes: bool) -> None:
        """When True, calls on disabled end-points take up to seven seconds to fail."""
        with self._lock:
            self._long_delays = yes

    def make_end(self, endname: Hashable) -> ClientEnd:
        """Create a disabled, unconnected end-point with a unique name."""
        with self._lock:
            if endname in self._ends:
                raise ValueError(f"make_end: {endname!r} already exists")
            end = ClientEnd(self, endname)
            self._ends[endname] = end
            self._enabled[endname] = False
            self._connections[endname] = None
            return end

    def delete_end(self, endname: Hashable) -> None:
        """Forget an end-point."""
        with self._lock:
            if endname not in self._ends:
                raise KeyError(f"delete_end: {endname!r} doesn't exist")
            del self._ends[endname]
            del self._enabled[endname]
            del self._connections[endname]

    def add_server(self, servername: Hashable, server: "Server") -> None:
        """Attach a server under a name."""
        with self._lock:
            self._servers[servername] = server

    def delete_server(self, servername: Hashable) -> None:
        """Take a server away; calls waiting on it fail."""
        with self._lock:
            self._servers[servername] = None

    def connect(self, endname: Hashable, servername: Hashable) -> None:
        """Route an end-point's calls to a server."""
        with self._lock:
            self._connections[endname] = servername

    def enable(self, endname: Hashable, enabled: bool) -> None:
        """Enable or disable an end-point."""
        with self._lock:
            self._enabled[endname] = enabled

    def get_count(self, servername: Hashable) -> int:
        """Number of RPCs that reached the named server."""
        with self._lock:
            server = self._servers.get(servername)
        if server is None:
            raise KeyError(f"get_count: no server {servername!r}")
        return server.get_count()

    def get_total_count(self) -> int:
        """Number of RPCs sent on the network."""
        with self._lock:
            return self._count

    def get_total_bytes(self) -> int:
        """Number of request and reply bytes carried by the network."""
        with self._lock:
            return self._bytes

    # ------------------------------------------------------------ internals

    def _read_endname_info(self, endname):
        with self._lock:
            enabled = self._enabled.get(endname, False)
            servername = self._connections.get(endname)
            server = self._servers.get(servername) if servername is not None else None
            return (
                enabled,
                servername,
                server,
                self._reliable,
                self._long_reordering,
                self._long_delays,
            )

    def _is_server_dead(self, endname, servername, server) -> bool:
        with self._lock:
            return not self._enabled.get(endname, False) or self._servers.get(servername) is not server

    def _process(self, endname, svc_meth: str, payload: bytes) -> bytes:
        with self._lock:
            self._count += 1
            self._bytes += len(payload)

        enabled, servername, server, reliable, reordering, long_delays = self._read_endname_info(
            endname
        )

        if not (enabled and servername is not None and server is not None):
            # Simulate no reply and an eventual timeout.
            delay_ms = random.randrange(7000) if long_delays else random.randrange(100)
            time.sleep(delay_ms / 1000)
            raise RPCError(f"no reply from {servername!r} to {endname!r}")

        if not reliable:
            time.sleep(random.randrange(27) / 1000)
            if random.randrange(1000) < 100:
                raise RPCError("request dropped")

        # Run the handler on its own thread so a deleted server can be noticed.
        results: queue.SimpleQueue = queue.SimpleQueue()
        threading.Thread(
            target=lambda: results.put(server._dispatch(svc_meth, payload)),
            daemon=True,
        ).start()

        outcome = None
        server_dead = False
        while outcome is None and not server_dead:
            try:
                outcome = results.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                server_dead = self._is_server_dead(endname, servername, server)

        # Never reply once the server has been deleted, so a client cannot
        # see success for an update persisted into a superseded store.
        server_dead = self._is_server_dead(endname, servername, server)
        if outcome is None or server_dead:
            raise RPCError(f"server {servername!r} went away")

        reply, error = outcome
        if error is not None:
            raise error

        if not reliable and random.randrange(1000) < 100:
            raise RPCError("reply dropped")
        if reordering and random.randrange(900) < 600:
            delay_ms = 200 + random.randrange(1 + random.randrange(2000))
            time.sleep(delay_ms / 1000)

        with self._lock:
            self._bytes += len(reply)
        return reply


class Server:
    """A collection of services sharing one RPC end-point."""

    def __init__(self):
        self._lock = threading.Lock()
        self._services: dict[str, Service] = {}
        self._count = 0

    def add_service(self, service: "Service") -> None:
        """Add a service; it is reached under its name."""
        with self._lock:
            self._services[service.name] = service

    def get_count(self) -> int:
        """Number of RPCs this server has received."""
        with self._lock:
            return self._count

    def _dispatch(self, svc_meth: str, payload: bytes):
        try:
            with self._lock:
                self._count += 1
                service_name, _, method_name = svc_meth.rpartition(".")
                service = self._services.get(service_name)
                choices = sorted(self._services)
            if service is None:
                raise LookupError(
                    f"unknown service {service_name!r} in {svc_meth!r}; expecting one of {choices}"
                )
            return service._dispatch(method_name, svc_meth, payload), None
        except Exception as exc:
            return None, exc


class Service:
    """An object whose one-argument public methods handle RPCs."""

    def __init__(self, receiver: Any):
        self.name = type(receiver).__name__
        self._methods: dict[str, Callable[[Any], Any]] = {}
        for attr_name in dir(type(receiver)):
            if attr_name.startswith("_"):
                continue
            function = inspect.getattr_static(receiver, attr_name)
            if not inspect.isfunction(function):
                continue
            if _is_handler(function):
                self._methods[attr_name] = getattr(receiver, attr_name)

    def _dispatch(self, method_name: str, svc_meth: str, payload: bytes) -> bytes:
        handler = self._methods.get(method_name)
        if handler is None:
            raise LookupError(
                f"unknown method {method_name!r} in {svc_meth!r}; "
                f"expecting one of {sorted(self._methods)}"
            )
        reply = handler(_decode(payload))
        return _encode(reply)