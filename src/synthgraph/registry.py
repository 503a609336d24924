"""Process-wide tables keyed by graph element type.

Two tables live here:

- the *type table*, mapping an integer type tag to the graph element class
  and the number of fields its serialized record carries. The binary codec
  in ``synthgraph.serial`` writes and reads records through it.
- the *factory table*, mapping a UGen name to the function that turns one
  fully expanded set of inputs into primitive nodes. Names without an entry
  use the builder's default construction.

Both are filled at import time (by the ``@ugen`` decorator and the modules
defining built-in elements) and are only read afterwards, so they can be
shared between threads building different graphs.
"""

import threading
import zlib
from typing import Any, Callable, NamedTuple


class RegisteredType(NamedTuple):
    type_id: int
    name: str
    cls: type
    arity: int


_lock = threading.Lock()
_types_by_id: dict[int, RegisteredType] = {}
_types_by_class: dict[type, RegisteredType] = {}
_factories: dict[str, Callable[..., Any]] = {}


def type_id_for_name(name: str) -> int:
    """The default type tag of a catalog element: a CRC-32 of its name."""
    return zlib.crc32(name.encode("utf-8"))


def register_type(
    cls: type, *, arity: int, name: str | None = None, type_id: int | None = None
) -> RegisteredType:
    name = name or cls.__name__
    if type_id is None:
        type_id = type_id_for_name(name)
    entry = RegisteredType(type_id=type_id, name=name, cls=cls, arity=arity)
    with _lock:
        existing = _types_by_id.get(type_id)
        if existing is not None and existing.cls is not cls:
            raise ValueError(
                f"Type tag {type_id} of {name} is already taken by {existing.name}"
            )
        _types_by_id[type_id] = entry
        _types_by_class[cls] = entry
    return entry


def lookup_type_id(type_id: int) -> RegisteredType:
    """Raise ``KeyError`` for unknown tags."""
    return _types_by_id[type_id]


def lookup_class(cls: type) -> RegisteredType:
    """Raise ``KeyError`` for unregistered classes."""
    return _types_by_class[cls]


def registered_types() -> tuple[RegisteredType, ...]:
    return tuple(sorted(_types_by_id.values(), key=lambda x: x.name))


def register_factory(name: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorate a node construction function for the UGen called ``name``."""

    def wrap(fn: Callable[..., Any]) -> Callable[..., Any]:
        with _lock:
            if name in _factories:
                raise ValueError(f"A factory for {name} is already registered")
            _factories[name] = fn
        return fn

    return wrap


def lookup_factory(name: str) -> Callable[..., Any] | None:
    return _factories.get(name)
