"""Messages and the Unix-socket RPC transport between MapReduce processes.

A request is two labgob records, the method name such as
``"Coordinator.assign_task"`` followed by the argument. The reply is one
record, ``("ok", reply)`` or ``("err", message)``.
"""

from __future__ import annotations

import io
import os
import socket
import socketserver
import threading
from dataclasses import dataclass
from typing import Any, Optional

from distlab.labgob import LabDecoder, LabEncoder, register


@dataclass
class TaskArgs:
    """A worker asking for work."""

    worker_id: int = 0


@dataclass
class TaskReply:
    """A task handed to a worker; ``task_type`` is map, reduce, wait or exit."""

    task_type: str = ""
    file_name: str = ""
    task_num: int = 0
    n_reduce: int = 0
    n_map: int = 0
    error: str = ""


@dataclass
class ReportArgs:
    """A worker reporting how a task went."""

    task_type: str = ""
    task_num: int = 0
    worker_id: int = 0
    success: bool = False


@dataclass
class ReportReply:
    """Acknowledgement of a report."""


for _cls in (TaskArgs, TaskReply, ReportArgs, ReportReply):
    register(_cls)


def coordinator_sock() -> str:
    """The coordinator's socket path, unique to the current user."""
    return "/var/tmp/5840-mr-" + str(os.getuid())


def _encode(*values: Any) -> bytes:
    buffer = io.BytesIO()
    encoder = LabEncoder(buffer)
    for value in values:
        encoder.encode(value)
    return buffer.getvalue()


def call(rpcname: str, args: Any, sockname: Optional[str] = None) -> Any:
    """Send one RPC to the process listening on ``sockname`` and return its reply.

    Raises OSError (ConnectionError included) when the server cannot be
    reached or gives no reply, and RuntimeError when the handler failed.
    """
    path = sockname or coordinator_sock()
    request = _encode(rpcname, args)
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(path)
        sock.sendall(request)
        sock.shutdown(socket.SHUT_WR)
        with sock.makefile("rb") as stream:
            try:
                response = LabDecoder(stream).decode()
            except (EOFError, ValueError) as exc:
                raise ConnectionError(f"no reply to {rpcname}") from exc
    if not (isinstance(response, tuple) and len(response) == 2):
        raise ConnectionError(f"malformed reply to {rpcname}")
    status, payload = response
    if status != "ok":
        raise RuntimeError(payload)
    return payload


def _dispatch(receiver: Any, rpcname: str, args: Any) -> Any:
    service, _, method_name = rpcname.rpartition(".")
    if service != type(receiver).__name__:
        raise LookupError(f"unknown service {service!r} in {rpcname!r}")
    method = None if method_name.startswith("_") else getattr(receiver, method_name, None)
    if not callable(method):
        raise LookupError(f"unknown method {method_name!r} in {rpcname!r}")
    return method(args)


class _Handler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        decoder = LabDecoder(self.rfile)
        try:
            rpcname = decoder.decode(str)
            args = decoder.decode()
        except (EOFError, ValueError, TypeError):
            return
        try:
            reply = _dispatch(self.server.receiver, rpcname, args)
            response = _encode(("ok", reply))
        except Exception as exc:
            response = _encode(("err", f"{type(exc).__name__}: {exc}"))
        self.wfile.write(response)


class _RPCServer(socketserver.ThreadingMixIn, socketserver.UnixStreamServer):
    daemon_threads = True

    def __init__(self, sockname: str, receiver: Any):
        self.receiver = receiver
        super().__init__(sockname, _Handler)


def serve(receiver: Any, sockname: Optional[str] = None) -> socketserver.BaseServer:
    """Answer RPCs for ``receiver`` on a Unix socket, in a background thread.

    Methods are reached as ``"<ClassName>.<method>"``. Returns the server;
    call its ``shutdown()`` and ``server_close()`` to stop it.
    """
    path = sockname or coordinator_sock()
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    server = _RPCServer(path, receiver)
    threading.Thread(target=server.serve_forever, daemon=True).start()
    return server