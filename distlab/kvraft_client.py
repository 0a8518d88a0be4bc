"""Client of a replicated key/value service that finds and follows the leader."""

from __future__ import annotations

import enum
import itertools
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Sequence

from distlab.labrpc import ClientEnd, RPCError

_RETRY_INTERVAL = 0.1


class Err(str, enum.Enum):
    """Outcomes a replica reports."""

    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_LEADER = "ErrWrongLeader"
    TIMEOUT = "ErrTimeout"


@dataclass
class PutAppendArgs:
    """Arguments of a Put or an Append; ``op`` is ``"Put"`` or ``"Append"``."""

    key: str = ""
    value: str = ""
    op: str = ""
    client_id: int = 0
    request_id: int = 0


@dataclass
class PutAppendReply:
    """Reply to a Put or an Append."""

    err: Err = Err.OK


@dataclass
class GetArgs:
    """Arguments of a Get."""

    key: str = ""
    client_id: int = 0
    request_id: int = 0


@dataclass
class GetReply:
    """Reply to a Get."""

    err: Err = Err.OK
    value: str = ""


class Clerk:
    """Sends each request to the replicas in turn until a leader accepts it."""

    def __init__(self, servers: Sequence[ClientEnd]):
        self._servers = list(servers)
        self._leader_id = 0
        self.client_id = secrets.randbelow(1 << 62)
        self._request_ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def _next_request_id(self) -> int:
        with self._ids_lock:
            return next(self._request_ids)

    def _candidates(self):
        count = len(self._servers)
        start = self._leader_id
        for offset in range(count):
            server_id = (start + offset) % count
            yield server_id, self._servers[server_id]

    def _send(self, method: str, args):
        """Try every replica, starting at the last leader, until one accepts."""
        while True:
            for server_id, end in self._candidates():
                try:
                    reply = end.call(method, args)
                except RPCError:
                    continue
                if reply.err != Err.WRONG_LEADER:
                    self._leader_id = server_id
                    return reply
            time.sleep(_RETRY_INTERVAL)

    def get(self, key: str) -> str:
        """Return the value of ``key``, or "" if it does not exist."""
        args = GetArgs(key=key, client_id=self.client_id, request_id=self._next_request_id())
        reply = self._send("KVServer.get", args)
        if reply.err == Err.NO_KEY:
            return ""
        return reply.value

    def put_append(self, key: str, value: str, op: str) -> None:
        """Send a ``"Put"`` or ``"Append"`` and wait until a leader accepts it."""
        if op not in ("Put", "Append"):
            raise ValueError(f"unknown operation {op!r}; expecting Put or Append")
        args = PutAppendArgs(
            key=key,
            value=value,
            op=op,
            client_id=self.client_id,
            request_id=self._next_request_id(),
        )
        self._send("KVServer.put_append", args)

    def put(self, key: str, value: str) -> None:
        """Set ``key`` to ``value``."""
        self.put_append(key, value, "Put")

    def append(self, key: str, value: str) -> None:
        """Append ``value`` to the value of ``key``."""
        self.put_append(key, value, "Append")