import json
from collections import Counter

import pytest

from distlab import mr_coordinator, mr_worker
from distlab.mr_coordinator import Coordinator, TaskStatus
from distlab.mr_rpc import ReportArgs, TaskArgs, TaskReply
from distlab.mr_worker import KeyValue, do_map, do_reduce, ihash


def word_map(filename, contents):
    return [KeyValue(word, "1") for word in contents.split()]


def count_reduce(key, values):
    return str(len(values))


def read_outputs(directory, n_reduce):
    result = {}
    for i in range(n_reduce):
        path = directory / f"mr-out-{i}"
        if path.exists():
            for line in path.read_text().splitlines():
                key, value = line.split(" ", 1)
                result[key] = value
    return result


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_ihash_matches_fnv1a():
    assert ihash("") == 0x011C9DC5
    assert ihash("a") == 0x640C292C


def test_ihash_is_non_negative_and_stable():
    for key in ["apple", "banana", "ünïcode", "x" * 100]:
        assert 0 <= ihash(key) < 2**31
        assert ihash(key) == ihash(key)


def test_do_map_buckets_pairs_by_hash(workdir):
    source = workdir / "in.txt"
    source.write_text("the quick brown fox jumps over the lazy dog")
    do_map(TaskReply(task_type="map", file_name=str(source), task_num=0, n_reduce=3), word_map)
    total = 0
    for bucket in range(3):
        lines = (workdir / f"mr-0-{bucket}").read_text().splitlines()
        for line in lines:
            record = json.loads(line)
            assert set(record) == {"Key", "Value"}
            assert ihash(record["Key"]) % 3 == bucket
        total += len(lines)
    assert total == len(source.read_text().split())
    assert not list(workdir.glob("*.tmp"))


def test_do_map_missing_file_reports_failure(workdir):
    with Coordinator(["absent.txt"], 2) as coordinator:
        coordinator.serve()
        task = coordinator.assign_task(TaskArgs(1))
        assert coordinator.map_tasks[0].status is TaskStatus.RUNNING
        do_map(task, word_map)
        assert coordinator.map_tasks[0].status is TaskStatus.PENDING
    assert not list(workdir.glob("mr-*"))


def test_do_map_failing_map_function_reports_failure(workdir):
    (workdir / "in.txt").write_text("words")

    def broken(filename, contents):
        raise RuntimeError("map failed")

    with Coordinator(["in.txt"], 2) as coordinator:
        coordinator.serve()
        task = coordinator.assign_task(TaskArgs(1))
        do_map(task, broken)
        assert coordinator.map_tasks[0].status is TaskStatus.PENDING
    assert not list(workdir.glob("mr-*"))


def test_map_then_reduce_counts_words(workdir):
    texts = ["a b a", "b c"]
    for num, text in enumerate(texts):
        (workdir / f"in{num}.txt").write_text(text)
        do_map(TaskReply(task_type="map", file_name=f"in{num}.txt", task_num=num, n_reduce=2), word_map)
    for bucket in range(2):
        do_reduce(TaskReply(task_type="reduce", task_num=bucket, n_map=2), count_reduce)
    expected = {word: str(n) for word, n in Counter(" ".join(texts).split()).items()}
    assert read_outputs(workdir, 2) == expected
    for bucket in range(2):
        keys = [line.split(" ")[0] for line in (workdir / f"mr-out-{bucket}").read_text().splitlines()]
        assert keys == sorted(keys)


def test_reduce_skips_missing_map_outputs(workdir):
    with Coordinator(["a.txt", "b.txt", "c.txt"], 1) as coordinator:
        coordinator.serve()
        for _ in range(3):
            task = coordinator.assign_task(TaskArgs(1))
            coordinator.report_task(ReportArgs(task_type="map", task_num=task.task_num, success=True))
        reduce_task = coordinator.assign_task(TaskArgs(1))
        assert (reduce_task.task_type, reduce_task.n_map) == ("reduce", 3)
        do_reduce(reduce_task, count_reduce)
        assert coordinator.reduce_tasks[0].status is TaskStatus.COMPLETED
    assert (workdir / "mr-out-0").read_text() == ""


def test_request_and_report_without_coordinator():
    assert mr_worker.request_task(1) is None
    assert mr_worker.report_task("map", 0, True) is False


def test_worker_runs_whole_job(workdir, monkeypatch):
    monkeypatch.setattr(mr_coordinator, "_DONE_GRACE", 0.0)
    texts = ["one two two", "three three three"]
    files = []
    for num, text in enumerate(texts):
        path = workdir / f"pg-{num}.txt"
        path.write_text(text)
        files.append(str(path))
    with Coordinator(files, 2) as coordinator:
        coordinator.serve()
        mr_worker.worker(word_map, count_reduce)
        assert coordinator.done() is True
        assert all(t.status is TaskStatus.COMPLETED for t in coordinator.reduce_tasks)
    expected = {word: str(n) for word, n in Counter(" ".join(texts).split()).items()}
    assert read_outputs(workdir, 2) == expected