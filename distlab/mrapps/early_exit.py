"""A MapReduce application whose slow reduce tasks expose workers that exit early."""

from __future__ import annotations

import time

from distlab.mr_worker import KeyValue

_SLOW_DELAY = 3


def map_func(filename: str, contents: str) -> list[KeyValue]:
    """Emit ``(filename, "1")`` once per input file."""
    return [KeyValue(filename, "1")]


def reduce_func(key: str, values: list[str]) -> str:
    """The number of values; keys naming sherlock or tom take three seconds."""
    if "sherlock" in key or "tom" in key:
        time.sleep(_SLOW_DELAY)
    return str(len(values))


__all__ = ["map_func", "reduce_func"]