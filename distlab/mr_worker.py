"""The MapReduce worker: asks the coordinator for tasks and runs them."""

from __future__ import annotations

import itertools
import json
import os
import time
from dataclasses import dataclass
from operator import attrgetter
from typing import Callable, Optional

from distlab.mr_rpc import ReportArgs, ReportReply, TaskArgs, TaskReply, call

_WAIT_INTERVAL = 1.0
_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193

MapFunc = Callable[[str, str], list]
ReduceFunc = Callable[[str, list], str]


@dataclass(frozen=True)
class KeyValue:
    """One pair emitted by a map function."""

    key: str
    value: str


def ihash(key: str) -> int:
    """A non-negative 32-bit FNV-1a hash; ``ihash(key) % n_reduce`` picks a bucket."""
    h = _FNV_OFFSET
    for byte in key.encode("utf-8"):
        h ^= byte
        h = (h * _FNV_PRIME) & 0xFFFFFFFF
    return h & 0x7FFFFFFF


def worker(mapf: MapFunc, reducef: ReduceFunc) -> None:
    """Run tasks from the coordinator until told to exit or it goes away."""
    worker_id = os.getpid()
    try:
        while True:
            task = request_task(worker_id)
            if task is None:
                return
            if task.task_type == "map":
                do_map(task, mapf)
            elif task.task_type == "reduce":
                do_reduce(task, reducef)
            elif task.task_type == "wait":
                time.sleep(_WAIT_INTERVAL)
            elif task.task_type == "exit":
                return
    except Exception:
        return


def request_task(worker_id: int) -> Optional[TaskReply]:
    """Ask the coordinator for a task; None if it cannot be reached."""
    try:
        return call("Coordinator.assign_task", TaskArgs(worker_id=worker_id))
    except (OSError, RuntimeError):
        return None


def _write_atomically(final_name: str, temp_name: str, lines) -> None:
    with open(temp_name, "w", encoding="utf-8") as out:
        out.writelines(lines)
    os.replace(temp_name, final_name)


def _run_map(task: TaskReply, mapf: MapFunc) -> None:
    with open(task.file_name, encoding="utf-8", errors="replace") as source:
        content = source.read()
    buckets: list[list] = [[] for _ in range(task.n_reduce)]
    for kv in mapf(task.file_name, content):
        buckets[ihash(kv.key) % task.n_reduce].append(kv)
    pid = os.getpid()
    for bucket_num, bucket in enumerate(buckets):
        _write_atomically(
            f"mr-{task.task_num}-{bucket_num}",
            f"mr-{task.task_num}-{bucket_num}-{pid}.tmp",
            (json.dumps({"Key": kv.key, "Value": kv.value}) + "\n" for kv in bucket),
        )


def do_map(task: TaskReply, mapf: MapFunc) -> None:
    """Run a map task, write one intermediate file per reduce bucket, and report."""
    try:
        _run_map(task, mapf)
    except Exception:
        report_task("map", task.task_num, False)
        return
    report_task("map", task.task_num, True)


def _read_intermediate(filename: str) -> list[KeyValue]:
    pairs = []
    try:
        with open(filename, encoding="utf-8") as source:
            for line in source:
                try:
                    record = json.loads(line)
                    pairs.append(KeyValue(record["Key"], record["Value"]))
                except (ValueError, KeyError, TypeError):
                    break
    except OSError:
        return []
    return pairs


def _run_reduce(task: TaskReply, reducef: ReduceFunc) -> None:
    intermediate = []
    for map_num in range(task.n_map):
        intermediate.extend(_read_intermediate(f"mr-{map_num}-{task.task_num}"))
    intermediate.sort(key=attrgetter("key"))
    lines = []
    for key, group in itertools.groupby(intermediate, key=attrgetter("key")):
        output = reducef(key, [kv.value for kv in group])
        lines.append(f"{key} {output}\n")
    _write_atomically(
        f"mr-out-{task.task_num}",
        f"mr-out-{task.task_num}-{os.getpid()}.tmp",
        lines,
    )


def do_reduce(task: TaskReply, reducef: ReduceFunc) -> None:
    """Run a reduce task over the map outputs of its bucket, and report."""
    try:
        _run_reduce(task, reducef)
    except Exception:
        report_task("reduce", task.task_num, False)
        return
    report_task("reduce", task.task_num, True)


def report_task(task_type: str, task_num: int, success: bool) -> bool:
    """Tell the coordinator how a task went; False if it could not be told."""
    args = ReportArgs(task_type=task_type, task_num=task_num, success=success)
    try:
        return isinstance(call("Coordinator.report_task", args), ReportReply)
    except (OSError, RuntimeError):
        return False