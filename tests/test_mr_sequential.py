import pytest

from distlab.mr_sequential import load_app, main, run_sequential, worker_main
from distlab.mr_worker import KeyValue
from distlab.mrapps import indexer, wc


def test_load_app_by_name():
    assert load_app("wc") == (wc.map_func, wc.reduce_func)


def test_load_app_by_plugin_path():
    assert load_app("../mrapps/indexer.so") == (indexer.map_func, indexer.reduce_func)


def test_load_app_unknown():
    with pytest.raises(ValueError):
        load_app("nosuchapp.so")


def test_run_sequential_word_count(tmp_path):
    first = tmp_path / "a.txt"
    second = tmp_path / "b.txt"
    first.write_text("the cat the")
    second.write_text("dog cat")
    out = tmp_path / "out"
    run_sequential(wc.map_func, wc.reduce_func, [str(first), str(second)], str(out))
    assert out.read_text() == "cat 2\ndog 1\nthe 2\n"


def test_run_sequential_keys_sorted_and_unique(tmp_path):
    source = tmp_path / "in.txt"
    source.write_text("zeta alpha mid alpha zeta beta")
    out = tmp_path / "out"
    run_sequential(wc.map_func, wc.reduce_func, [str(source)], str(out))
    keys = [line.split(" ")[0] for line in out.read_text().splitlines()]
    assert keys == sorted(set(keys))


def test_run_sequential_passes_values_in_order(tmp_path):
    files = []
    for name in ("f1", "f2"):
        path = tmp_path / name
        path.write_text("k")
        files.append(str(path))
    out = tmp_path / "out"
    run_sequential(
        lambda filename, contents: [KeyValue(contents, filename)],
        lambda key, values: "|".join(values),
        files,
        str(out),
    )
    assert out.read_text() == "k " + "|".join(files) + "\n"


def test_run_sequential_missing_file(tmp_path):
    with pytest.raises(OSError):
        run_sequential(wc.map_func, wc.reduce_func, [str(tmp_path / "missing")], str(tmp_path / "o"))


def test_main_writes_default_output(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "in.txt").write_text("one two one")
    assert main(["wc.so", "in.txt"]) == 0
    lines = (tmp_path / "mr-out-0").read_text().splitlines()
    assert [line.split(" ")[0] for line in lines] == ["one", "two"]


def test_main_usage_error(capsys):
    assert main(["wc.so"]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_unknown_app(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "in.txt").write_text("x")
    assert main(["bogus.so", "in.txt"]) == 1


def test_worker_main_usage_error(capsys):
    assert worker_main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_worker_main_unknown_app():
    assert worker_main(["bogus"]) == 1