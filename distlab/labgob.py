"""Self-describing encoding for RPC messages and persisted state.

Values are written as length-prefixed records. Each record holds a tagged
tree that describes the value, so a decoder can rebuild it without sharing
any object with the encoder. Dataclass fields whose names start with an
underscore are private. They are never sent, and every class that has
them is reported once. Decoding into a target that already holds
non-default values is reported as well.
"""

from __future__ import annotations

import base64
import dataclasses
import enum
import json
import struct
import threading
import types
import typing

_HEADER = struct.Struct(">I")

_lock = threading.Lock()
_error_count = 0
_checked: set = set()
_types_by_name: dict[str, type] = {}
_names_by_type: dict[type, str] = {}


def error_count() -> int:
    """Return how many encoding problems have been reported so far."""
    with _lock:
        return _error_count


def _note_error(message: str, *, only_first: bool = False) -> None:
    global _error_count
    with _lock:
        if not only_first or _error_count < 1:
            print(message)
        _error_count += 1


# ---------------------------------------------------------------- registry


def _default_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _is_encodable_class(cls: type) -> bool:
    return dataclasses.is_dataclass(cls) or issubclass(cls, enum.Enum)


def _register_class(name: str, cls: type) -> None:
    with _lock:
        existing = _types_by_name.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(f"labgob: name {name!r} is already registered for {existing!r}")
        current = _names_by_type.get(cls)
        if current is not None and current != name:
            raise ValueError(f"labgob: {cls!r} is already registered as {current!r}")
        _types_by_name[name] = cls
        _names_by_type[cls] = name


def _class_of(value: typing.Any) -> type:
    return value if isinstance(value, type) else type(value)


def register(value: typing.Any) -> None:
    """Register the class of ``value`` (or ``value`` itself if it is a class)."""
    register_name(_default_name(_class_of(value)), value)


def register_name(name: str, value: typing.Any) -> None:
    """Register the class of ``value`` under an explicit wire name."""
    _check_value(value)
    cls = _class_of(value)
    if not _is_encodable_class(cls):
        raise TypeError(f"labgob: only dataclasses and enums can be registered, not {cls!r}")
    _register_class(name, cls)


def _name_for(cls: type) -> str:
    with _lock:
        name = _names_by_type.get(cls)
    if name is None:
        name = _default_name(cls)
        _register_class(name, cls)
    return name


def _class_named(name: str) -> type:
    with _lock:
        cls = _types_by_name.get(name)
    if cls is None:
        raise ValueError(f"labgob: unregistered type name {name!r}")
    return cls


# ------------------------------------------------------------------ checks

_BUILTIN_NAMES: dict[str, type] = {
    "int": int,
    "str": str,
    "bool": bool,
    "float": float,
    "bytes": bytes,
    "list": list,
    "dict": dict,
    "set": set,
    "tuple": tuple,
}


def _resolve_hint(hint: typing.Any) -> typing.Any:
    """Map a textual annotation of a builtin type onto that type."""
    if isinstance(hint, str):
        base = hint.split("[", 1)[0].strip()
        return _BUILTIN_NAMES.get(base, hint)
    return hint


def _hints(cls: type) -> dict:
    return {field.name: _resolve_hint(field.type) for field in dataclasses.fields(cls)}


def _is_type_like(target: typing.Any) -> bool:
    return (
        isinstance(target, type)
        or typing.get_origin(target) is not None
        or target is typing.Any
    )


def _check_type(tp: typing.Any) -> None:
    try:
        with _lock:
            if tp in _checked:
                return
            _checked.add(tp)
    except TypeError:
        pass

    if typing.get_origin(tp) is not None:
        for arg in typing.get_args(tp):
            if arg is not Ellipsis:
                _check_type(arg)
        return

    if isinstance(tp, type) and dataclasses.is_dataclass(tp):
        hints = _hints(tp)
        for field in dataclasses.fields(tp):
            if field.name.startswith("_"):
                _note_error(
                    f"labgob error: private field {field.name} of {tp.__name__} "
                    "in RPC or persist/snapshot will not be transmitted"
                )
            _check_type(hints.get(field.name, field.type))


def _walk(value: typing.Any) -> None:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        _check_type(type(value))
        for field in dataclasses.fields(value):
            _walk(getattr(value, field.name))
    elif isinstance(value, dict):
        for key, item in value.items():
            _walk(key)
            _walk(item)
    elif isinstance(value, (list, tuple, set, frozenset)):
        for item in value:
            _walk(item)


def _check_value(value: typing.Any) -> None:
    if _is_type_like(value):
        _check_type(value)
    else:
        _walk(value)


_PRIMITIVES = (bool, int, float, str, bytes)
_CONTAINERS = (list, dict, set, tuple)


def _check_default(value: typing.Any, depth: int = 1, name: str = "") -> None:
    if depth > 3:
        return
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        for field in dataclasses.fields(value):
            qualified = f"{name}.{field.name}" if name else field.name
            _check_default(getattr(value, field.name), depth + 1, qualified)
        return
    if isinstance(value, _PRIMITIVES) and not isinstance(value, enum.Enum):
        if value != type(value)():
            what = name or type(value).__name__
            _note_error(
                f"labgob warning: Decoding into a non-default variable/field {what} may not work",
                only_first=True,
            )


# ----------------------------------------------------------------- trees


def _to_tree(value: typing.Any) -> list:
    if value is None:
        return ["n"]
    if isinstance(value, enum.Enum):
        return ["e", _name_for(type(value)), _to_tree(value.value)]
    if isinstance(value, bool):
        return ["b", value]
    if isinstance(value, int):
        return ["i", int(value)]
    if isinstance(value, float):
        return ["f", value]
    if isinstance(value, str):
        return ["s", value]
    if isinstance(value, (bytes, bytearray)):
        return ["y", base64.b64encode(bytes(value)).decode("ascii")]
    if isinstance(value, list):
        return ["l", [_to_tree(item) for item in value]]
    if isinstance(value, tuple):
        return ["t", [_to_tree(item) for item in value]]
    if isinstance(value, (set, frozenset)):
        return ["S", [_to_tree(item) for item in value]]
    if isinstance(value, dict):
        return ["d", [[_to_tree(k), _to_tree(v)] for k, v in value.items()]]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        cls = type(value)
        fields = {
            field.name: _to_tree(getattr(value, field.name))
            for field in dataclasses.fields(value)
            if not field.name.startswith("_")
        }
        return ["o", _name_for(cls), fields]
    raise TypeError(f"labgob: cannot encode value of type {type(value).__name__}")


def _zero(hint: typing.Any) -> typing.Any:
    if hint in _PRIMITIVES or hint in _CONTAINERS:
        return hint()
    origin = typing.get_origin(hint)
    if origin in _CONTAINERS:
        return origin()
    return None


def _build(cls: type, values: dict) -> typing.Any:
    obj = cls.__new__(cls)
    hints = _hints(cls)
    for field in dataclasses.fields(cls):
        if field.name in values:
            item = values[field.name]
        elif field.default is not dataclasses.MISSING:
            item = field.default
        elif field.default_factory is not dataclasses.MISSING:
            item = field.default_factory()
        else:
            item = _zero(hints.get(field.name, field.type))
        object.__setattr__(obj, field.name, item)
    return obj


def _from_tree(node: typing.Any) -> typing.Any:
    try:
        tag = node[0]
        if tag == "n":
            return None
        if tag in ("b", "i", "f", "s"):
            expected = {"b": bool, "i": int, "f": (float, int), "s": str}[tag]
            value = node[1]
            if not isinstance(value, expected):
                raise ValueError(f"labgob: bad payload for tag {tag!r}")
            return float(value) if tag == "f" else value
        if tag == "y":
            return base64.b64decode(node[1].encode("ascii"), validate=True)
        if tag == "l":
            return [_from_tree(item) for item in node[1]]
        if tag == "t":
            return tuple(_from_tree(item) for item in node[1])
        if tag == "S":
            return {_from_tree(item) for item in node[1]}
        if tag == "d":
            return {_from_tree(k): _from_tree(v) for k, v in node[1]}
        if tag == "e":
            return _class_named(node[1])(_from_tree(node[2]))
        if tag == "o":
            cls = _class_named(node[1])
            return _build(cls, {name: _from_tree(item) for name, item in node[2].items()})
    except ValueError:
        raise
    except (IndexError, KeyError, TypeError, AttributeError) as exc:
        raise ValueError(f"labgob: malformed record: {exc}") from exc
    raise ValueError(f"labgob: unknown tag {node[0]!r}")


def _matches(value: typing.Any, hint: typing.Any) -> bool:
    if hint is typing.Any or hint is object:
        return True
    origin = typing.get_origin(hint)
    if origin is typing.Union or origin is types.UnionType:
        return any(_matches(value, arg) for arg in typing.get_args(hint))
    check = origin or hint
    if check is float and isinstance(value, int) and not isinstance(value, bool):
        return True
    try:
        return isinstance(value, check)
    except TypeError:
        return True


# ---------------------------------------------------------------- streams


class LabEncoder:
    """Writes encoded values to a binary stream."""

    def __init__(self, stream):
        self._stream = stream

    def encode(self, value: typing.Any) -> None:
        """Encode ``value`` and append it to the stream."""
        _check_value(value)
        tree = _to_tree(value)
        payload = json.dumps(tree, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        self._stream.write(_HEADER.pack(len(payload)) + payload)


class LabDecoder:
    """Reads encoded values from a binary stream."""

    def __init__(self, stream):
        self._stream = stream

    def _read_exact(self, size: int, *, at_start: bool = False) -> bytes:
        chunks = []
        remaining = size
        while remaining:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        if at_start and size and not data:
            raise EOFError("labgob: no more values in stream")
        if len(data) < size:
            raise ValueError("labgob: truncated record")
        return data

    def _read_value(self) -> typing.Any:
        (size,) = _HEADER.unpack(self._read_exact(_HEADER.size, at_start=True))
        payload = self._read_exact(size)
        try:
            tree = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError(f"labgob: malformed record: {exc}") from exc
        return _from_tree(tree)

    def decode(self, target: typing.Any = None) -> typing.Any:
        """Read the next value.

        ``target`` may be None, a type (the value must match it), or an
        existing dataclass instance, list, dict or set that is filled in
        place and returned.
        """
        if target is not None:
            _check_value(target)
            if not _is_type_like(target):
                _check_default(target)

        value = self._read_value()

        if target is None:
            return value
        if _is_type_like(target):
            if not _matches(value, target):
                raise TypeError(
                    f"labgob: decoded {type(value).__name__} does not match {target!r}"
                )
            return value
        if dataclasses.is_dataclass(target):
            if type(value) is not type(target):
                raise TypeError(
                    f"labgob: decoded {type(value).__name__} into {type(target).__name__}"
                )
            for field in dataclasses.fields(target):
                object.__setattr__(target, field.name, getattr(value, field.name))
            return target
        if isinstance(target, list) and isinstance(value, list):
            target[:] = value
            return target
        if isinstance(target, dict) and isinstance(value, dict):
            target.clear()
            target.update(value)
            return target
        if isinstance(target, set) and isinstance(value, set):
            target.clear()
            target.update(value)
            return target
        if not _matches(value, type(target)):
            raise TypeError(
                f"labgob: decoded {type(value).__name__} into {type(target).__name__}"
            )
        return value