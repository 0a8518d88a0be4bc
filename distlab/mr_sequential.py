"""Run a MapReduce application in one process, and start workers by app name."""

from __future__ import annotations

import itertools
import sys
from operator import attrgetter
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from distlab.mr_worker import worker
from distlab.mrapps import crash, early_exit, indexer, jobcount, mtiming, nocrash, rtiming, wc

MapFunc = Callable[[str, str], list]
ReduceFunc = Callable[[str, list], str]

_APPS = {
    "wc": wc,
    "indexer": indexer,
    "crash": crash,
    "nocrash": nocrash,
    "early_exit": early_exit,
    "jobcount": jobcount,
    "mtiming": mtiming,
    "rtiming": rtiming,
}


def load_app(name: str) -> tuple[MapFunc, ReduceFunc]:
    """Return the map and reduce functions of a named application.

    ``name`` may be a bare name such as ``"wc"`` or a path such as
    ``"../mrapps/wc.so"``; only its stem is used.
    """
    app = _APPS.get(Path(name).stem)
    if app is None:
        raise ValueError(f"cannot load application {name!r}; known: {sorted(_APPS)}")
    return app.map_func, app.reduce_func


def run_sequential(
    mapf: MapFunc,
    reducef: ReduceFunc,
    files: Iterable[str],
    output: str = "mr-out-0",
) -> None:
    """Map every file, sort by key, reduce each key, and write ``key result`` lines."""
    intermediate = []
    for filename in files:
        with open(filename, encoding="utf-8", errors="replace") as source:
            contents = source.read()
        intermediate.extend(mapf(filename, contents))

    intermediate.sort(key=attrgetter("key"))

    with open(output, "w", encoding="utf-8") as out:
        for key, group in itertools.groupby(intermediate, key=attrgetter("key")):
            result = reducef(key, [kv.value for kv in group])
            out.write(f"{key} {result}\n")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line: ``mrsequential app inputfiles...``, output to mr-out-0."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < 2:
        print("Usage: mrsequential app inputfiles...", file=sys.stderr)
        return 1
    try:
        mapf, reducef = load_app(args[0])
        run_sequential(mapf, reducef, args[1:])
    except (ValueError, OSError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


def worker_main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line: ``mrworker app``; runs tasks until the coordinator is done."""
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) != 1:
        print("Usage: mrworker app", file=sys.stderr)
        return 1
    try:
        mapf, reducef = load_app(args[0])
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    worker(mapf, reducef)
    return 0


if __name__ == "__main__":
    sys.exit(main())