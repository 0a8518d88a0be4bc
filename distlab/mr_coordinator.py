"""The MapReduce coordinator: hands out map tasks, then reduce tasks."""

from __future__ import annotations

import enum
import os
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from distlab import mr_rpc
from distlab.mr_rpc import ReportArgs, ReportReply, TaskArgs, TaskReply

TASK_TIMEOUT = 15.0
N_REDUCE = 10
_TIMEOUT_CHECK_DELAY = 3.0
_DONE_GRACE = 1.0


class TaskStatus(enum.Enum):
    """Where a task is in its life."""

    PENDING = enum.auto()
    RUNNING = enum.auto()
    COMPLETED = enum.auto()


@dataclass
class TaskInfo:
    """The state of one map or reduce task."""

    status: TaskStatus = TaskStatus.PENDING
    start_time: Optional[float] = None
    file_name: str = ""
    task_num: int = 0


class Coordinator:
    """Tracks tasks and answers workers' ``assign_task`` and ``report_task`` RPCs."""

    def __init__(self, files: Sequence[str], n_reduce: int):
        self.files = list(files)
        self.n_reduce = n_reduce
        self.map_tasks = [TaskInfo(file_name=name, task_num=i) for i, name in enumerate(self.files)]
        self.reduce_tasks = [TaskInfo(task_num=i) for i in range(n_reduce)]
        self._map_lock = threading.Lock()
        self._reduce_lock = threading.Lock()
        self._server = None
        self._sockname: Optional[str] = None

    def check_timeouts(self) -> None:
        """Mark tasks that have been running longer than the timeout as completed."""
        now = time.monotonic()
        for lock, tasks in ((self._map_lock, self.map_tasks), (self._reduce_lock, self.reduce_tasks)):
            with lock:
                for task in tasks:
                    if (
                        task.status is TaskStatus.RUNNING
                        and task.start_time is not None
                        and now - task.start_time > TASK_TIMEOUT
                    ):
                        task.status = TaskStatus.COMPLETED

    def done(self) -> bool:
        """True, after a short grace period, once every task has completed."""
        with self._map_lock:
            if any(task.status is not TaskStatus.COMPLETED for task in self.map_tasks):
                return False
        with self._reduce_lock:
            if any(task.status is not TaskStatus.COMPLETED for task in self.reduce_tasks):
                return False
        time.sleep(_DONE_GRACE)
        return True

    def assign_task(self, args: TaskArgs) -> TaskReply:
        """Hand out a pending task, or tell the worker to wait or exit."""
        with self._map_lock:
            for task in self.map_tasks:
                if task.status is TaskStatus.PENDING:
                    task.status = TaskStatus.RUNNING
                    task.start_time = time.monotonic()
                    return TaskReply(
                        task_type="map",
                        task_num=task.task_num,
                        file_name=task.file_name,
                        n_reduce=self.n_reduce,
                    )
            if any(task.status is not TaskStatus.COMPLETED for task in self.map_tasks):
                return TaskReply(task_type="wait")
            n_map = len(self.map_tasks)

        with self._reduce_lock:
            for task in self.reduce_tasks:
                if task.status is TaskStatus.PENDING:
                    task.status = TaskStatus.RUNNING
                    task.start_time = time.monotonic()
                    return TaskReply(task_type="reduce", task_num=task.task_num, n_map=n_map)
            if any(task.status is not TaskStatus.COMPLETED for task in self.reduce_tasks):
                return TaskReply(task_type="wait")

        return TaskReply(task_type="exit")

    def report_task(self, args: ReportArgs) -> ReportReply:
        """Complete a running task on success; otherwise make it pending again."""
        if args.task_type == "map":
            lock, tasks = self._map_lock, self.map_tasks
        elif args.task_type == "reduce":
            lock, tasks = self._reduce_lock, self.reduce_tasks
        else:
            return ReportReply()
        with lock:
            task = tasks[args.task_num]
            if args.success and task.status is TaskStatus.RUNNING:
                task.status = TaskStatus.COMPLETED
            else:
                task.status = TaskStatus.PENDING
                task.start_time = None
        return ReportReply()

    def serve(self, sockname: Optional[str] = None) -> None:
        """Start answering workers on a Unix socket."""
        self._sockname = sockname or mr_rpc.coordinator_sock()
        self._server = mr_rpc.serve(self, self._sockname)

    def close(self) -> None:
        """Stop answering workers and remove the socket."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        try:
            os.remove(self._sockname)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "Coordinator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _check_timeouts_later(coordinator: Coordinator) -> None:
    time.sleep(_TIMEOUT_CHECK_DELAY)
    coordinator.check_timeouts()


def make_coordinator(files: Sequence[str], n_reduce: int) -> Coordinator:
    """Create a coordinator and start serving on the default socket."""
    coordinator = Coordinator(files, n_reduce)
    threading.Thread(target=_check_timeouts_later, args=(coordinator,), daemon=True).start()
    coordinator.serve()
    return coordinator


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a coordinator over the given input files until the job is done."""
    files = list(sys.argv[1:] if argv is None else argv)
    if not files:
        print("Usage: mrcoordinator inputfiles...", file=sys.stderr)
        return 1
    coordinator = make_coordinator(files, N_REDUCE)
    try:
        while not coordinator.done():
            time.sleep(1)
        time.sleep(1)
    finally:
        coordinator.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())