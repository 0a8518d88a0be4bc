"""A single key/value server with versioned puts and at-most-once appends.

The server answers RPCs through :mod:`distlab.labrpc`; a :class:`Clerk`
talks to it over a :class:`~distlab.labrpc.ClientEnd` and keeps retrying
until a reply arrives.
"""

from __future__ import annotations

import itertools
import secrets
import threading
import time
from dataclasses import dataclass

from distlab.labrpc import ClientEnd, RPCError

ERR_NO_KEY = "ErrNoKey"
ERR_VERSION = "ErrVersion"

_RETRY_INTERVAL = 0.1
_PUT_APPEND_METHODS = {"Put": "KVServer.put", "Append": "KVServer.append"}


@dataclass
class PutAppendArgs:
    """Arguments of a Put or an Append."""

    key: str = ""
    value: str = ""
    version: int = 0
    client_id: int = 0
    request_id: int = 0


@dataclass
class PutAppendReply:
    """Reply to a Put or an Append; ``value`` is the old value for an Append."""

    err: str = ""
    value: str = ""
    version: int = 0


@dataclass
class GetArgs:
    """Arguments of a Get."""

    key: str = ""
    client_id: int = 0
    request_id: int = 0


@dataclass
class GetReply:
    """Reply to a Get."""

    err: str = ""
    value: str = ""
    version: int = 0


@dataclass
class KeyValue:
    """A stored value and its version."""

    value: str
    version: int


@dataclass
class LastOp:
    """The last Append applied for a client, kept to answer retries."""

    request_id: int
    response: str


class KVServer:
    """An in-memory key/value store whose methods are RPC handlers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._store: dict[str, KeyValue] = {}
        self._applied: dict[int, LastOp] = {}

    def get(self, args: GetArgs) -> GetReply:
        """Return the value and version of a key, or ``ErrNoKey``."""
        with self._lock:
            entry = self._store.get(args.key)
            if entry is None:
                return GetReply(err=ERR_NO_KEY)
            return GetReply(value=entry.value, version=entry.version)

    def put(self, args: PutAppendArgs) -> PutAppendReply:
        """Store a value; a non-zero version must match the stored one."""
        with self._lock:
            err = self._check_version(args.key, args.version)
            if err:
                return PutAppendReply(err=err)
            new_version = args.version + 1
            self._store[args.key] = KeyValue(args.value, new_version)
            return PutAppendReply(version=new_version)

    def append(self, args: PutAppendArgs) -> PutAppendReply:
        """Append to a key's value and return the value it had before."""
        with self._lock:
            last = self._applied.get(args.client_id)
            if last is not None and args.request_id <= last.request_id:
                return PutAppendReply(value=last.response)

            entry = self._store.get(args.key)
            old_value = entry.value if entry is not None else ""
            new_version = entry.version + 1 if entry is not None else 1
            self._store[args.key] = KeyValue(old_value + args.value, new_version)
            self._applied[args.client_id] = LastOp(args.request_id, old_value)
            return PutAppendReply(value=old_value, version=new_version)

    def _check_version(self, key: str, version: int) -> str:
        if version > 0:
            entry = self._store.get(key)
            if entry is None:
                return ERR_NO_KEY
            if entry.version != version:
                return ERR_VERSION
        return ""


def start_kv_server() -> KVServer:
    """Create an empty server."""
    return KVServer()


class Clerk:
    """A client of one :class:`KVServer` that retries until it gets a reply."""

    def __init__(self, server: ClientEnd):
        self._server = server
        self.client_id = secrets.randbelow(1 << 62)
        self._request_ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def _next_request_id(self) -> int:
        with self._ids_lock:
            return next(self._request_ids)

    def get(self, key: str) -> str:
        """Return the value of ``key``, or "" if it does not exist."""
        args = GetArgs(key=key, client_id=self.client_id, request_id=self._next_request_id())
        while True:
            try:
                reply = self._server.call("KVServer.get", args)
            except RPCError:
                time.sleep(_RETRY_INTERVAL)
                continue
            if reply.err == ERR_NO_KEY:
                return ""
            return reply.value

    def put_append(self, key: str, value: str, op: str) -> str:
        """Send a ``"Put"`` or ``"Append"``; return the old value for an Append."""
        method = _PUT_APPEND_METHODS.get(op)
        if method is None:
            raise ValueError(f"unknown operation {op!r}; expecting Put or Append")
        args = PutAppendArgs(
            key=key,
            value=value,
            version=0,
            client_id=self.client_id,
            request_id=self._next_request_id(),
        )
        while True:
            try:
                reply = self._server.call(method, args)
            except RPCError:
                reply = None
            if reply is not None and reply.err == "":
                return reply.value if op == "Append" else ""
            time.sleep(_RETRY_INTERVAL)

    def put(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``."""
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> str:
        """Append ``value`` to ``key`` and return the value it had before."""
        return self.put_append(key, value, "Append")