"""An inverted index: for each word, the documents that contain it."""

from __future__ import annotations

import itertools

from distlab.mr_worker import KeyValue


def map_func(document: str, value: str) -> list[KeyValue]:
    """Emit ``(word, document)`` once for each distinct word in ``value``."""
    words = (
        "".join(run)
        for is_letter, run in itertools.groupby(value, key=str.isalpha)
        if is_letter
    )
    return [KeyValue(word, document) for word in dict.fromkeys(words)]


def reduce_func(key: str, values: list[str]) -> str:
    """The number of documents, then their names sorted and comma separated."""
    documents = sorted(values)
    return f"{len(documents)} {','.join(documents)}"