"""A MapReduce application that sometimes crashes and sometimes stalls.

It exists to test that a MapReduce job recovers from failed workers.
"""

from __future__ import annotations

import os
import secrets
import time

from distlab.mr_worker import KeyValue


def maybe_crash() -> None:
    """Exit the process about a third of the time; stall up to ten seconds another third."""
    roll = secrets.randbelow(1000)
    if roll < 330:
        os._exit(1)
    elif roll < 660:
        time.sleep(secrets.randbelow(10 * 1000) / 1000)


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