"""Linearizability model of a key/value store, one key at a time."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


class KvOp(enum.IntEnum):
    """Kinds of key/value operations recorded in a history."""

    GET = 0
    PUT = 1
    APPEND = 2
    APPEND_RETURNING = 3


@dataclass(frozen=True)
class KvInput:
    """What a client asked for."""

    op: int
    key: str
    value: str = ""


@dataclass(frozen=True)
class KvOutput:
    """What a client got back."""

    value: str = ""


@dataclass(frozen=True)
class Operation:
    """One client operation with its call and return times."""

    input: Any
    output: Any
    call: int
    ret: int
    client_id: int = 0


def partition(history: list[Operation]) -> list[list[Operation]]:
    """Split a history by key, keys in sorted order, each keeping history order."""
    by_key: dict[str, list[Operation]] = {}
    for operation in history:
        by_key.setdefault(operation.input.key, []).append(operation)
    return [by_key[key] for key in sorted(by_key)]


def init_state() -> str:
    """The value of a key that has never been written."""
    return ""


def step(state: str, input: KvInput, output: KvOutput) -> tuple[bool, str]:
    """Apply one operation; return whether it is legal and the new state."""
    if input.op == KvOp.GET:
        return output.value == state, state
    if input.op == KvOp.PUT:
        return True, input.value
    if input.op == KvOp.APPEND:
        return True, state + input.value
    return output.value == state, state + input.value


def describe_operation(input: KvInput, output: KvOutput) -> str:
    """A short human-readable form of an operation."""
    if input.op == KvOp.GET:
        return f"get('{input.key}') -> '{output.value}'"
    if input.op == KvOp.PUT:
        return f"put('{input.key}', '{input.value}')"
    if input.op == KvOp.APPEND:
        return f"append('{input.key}', '{input.value}')"
    return "<invalid>"