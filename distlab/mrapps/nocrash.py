"""The same application as the crashing one, except that it never crashes."""

from __future__ import annotations

import secrets

from distlab.mr_worker import KeyValue


def maybe_crash() -> None:
    """Draw a random number as the crashing variant does, but never crash."""
    secrets.randbelow(1000)


def map_func(filename: str, contents: str) -> list[KeyValue]:
    """Emit the file name, its length, the contents' length and a constant."""
    maybe_crash()
    return [
        KeyValue("a", filename),
        KeyValue("b", str(len(filename.encode("utf-8")))),
        KeyValue("c", str(len(contents.encode("utf-8")))),
        KeyValue("d", "xyzzy"),
    ]


def reduce_func(key: str, values: list[str]) -> str:
    """The values sorted and joined by spaces."""
    maybe_crash()
    return " ".join(sorted(values))