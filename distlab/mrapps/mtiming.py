"""A MapReduce application that checks map tasks run in parallel."""

from __future__ import annotations

import os
import re
import time

from distlab.mr_worker import KeyValue


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except (OSError, OverflowError):
        return False
    return True


def nparallel(phase: str) -> int:
    """Count the workers, this one included, currently in ``phase``.

    Each worker leaves a marker file named after its process id in the
    working directory for a second; markers of live processes are counted.
    """
    marker = f"mr-worker-{phase}-{os.getpid()}"
    with open(marker, "w", encoding="ascii") as out:
        out.write("x")

    pattern = re.compile(rf"mr-worker-{re.escape(phase)}-([+-]?\d+)")
    running = 0
    for name in os.listdir("."):
        match = pattern.match(name)
        if match and _alive(int(match.group(1))):
            running += 1

    time.sleep(1)
    os.remove(marker)
    return running


def map_func(filename: str, contents: str) -> list[KeyValue]:
    """Emit when this map task started and how many map tasks ran alongside it."""
    started = time.time()
    pid = os.getpid()
    running = nparallel("map")
    return [
        KeyValue(f"times-{pid}", f"{started:.1f}"),
        KeyValue(f"parallel-{pid}", str(running)),
    ]


def reduce_func(key: str, values: list[str]) -> str:
    """The values sorted and joined by spaces."""
    return " ".join(sorted(values))