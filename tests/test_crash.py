from unittest.mock import call, patch

import pytest

from distlab.mr_worker import KeyValue
from distlab.mrapps.crash import map_func, maybe_crash, reduce_func


def _raise_exit(code):
    raise SystemExit(code)


@patch("secrets.randbelow", return_value=999)
def test_map_output(_randbelow):
    result = map_func("in.txt", "hello")
    assert result == [
        KeyValue("a", "in.txt"),
        KeyValue("b", str(len("in.txt"))),
        KeyValue("c", str(len("hello"))),
        KeyValue("d", "xyzzy"),
    ]


@patch("secrets.randbelow", return_value=999)
def test_map_lengths_are_in_bytes(_randbelow):
    result = map_func("é", "éé")
    assert result[1].value == str(len("é".encode("utf-8")))
    assert result[2].value == str(len("éé".encode("utf-8")))


@patch("secrets.randbelow", return_value=999)
def test_reduce_sorts_values(_randbelow):
    assert reduce_func("k", ["b", "c", "a"]) == "a b c"


def test_maybe_crash_exits_on_low_roll():
    with patch("secrets.randbelow", return_value=0), patch(
        "os._exit", side_effect=_raise_exit
    ):
        with pytest.raises(SystemExit) as info:
            maybe_crash()
    assert info.value.code == 1


def test_maybe_crash_delays_on_middle_roll():
    with patch("secrets.randbelow", side_effect=[500, 2500]), patch(
        "time.sleep"
    ) as sleep_mock, patch("os._exit") as exit_mock:
        result = maybe_crash()
    assert result is None
    assert sleep_mock.call_args_list == [call(2.5)]
    assert exit_mock.call_count == 0


def test_maybe_crash_does_nothing_on_high_roll():
    with patch("secrets.randbelow", return_value=700), patch(
        "time.sleep"
    ) as sleep_mock, patch("os._exit") as exit_mock:
        result = maybe_crash()
    assert result is None
    assert sleep_mock.call_count == 0
    assert exit_mock.call_count == 0