"""A MapReduce application that counts how many times map tasks were run."""

from __future__ import annotations

import itertools
import os
import random
import time

from distlab.mr_worker import KeyValue

_PREFIX = "mr-worker-jobcount"
_invocations = itertools.count()


def map_func(filename: str, contents: str) -> list[KeyValue]:
    """Leave a marker file in the working directory, pause, and emit one pair."""
    marker = f"{_PREFIX}-{os.getpid()}-{next(_invocations)}"
    with open(marker, "w", encoding="ascii") as out:
        out.write("x")
    time.sleep(random.randrange(2000, 5000) / 1000)
    return [KeyValue("a", "x")]


def reduce_func(key: str, values: list[str]) -> str:
    """The number of marker files, i.e. map tasks run, in the working directory."""
    return str(sum(1 for name in os.listdir(".") if name.startswith(_PREFIX)))