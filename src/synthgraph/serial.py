"""
Tagged binary encoding of synth graphs and assembled SynthDefs.

A stream starts with ``b"SGRF"`` and a 16-bit version, followed by a single
element. Every element begins with a one-byte cookie:

=======  ===========================================================
``C``    constant, 64-bit float
``R``    calculation rate, signed byte (-1 when undefined)
``P``    product record: 32-bit type tag, 16-bit arity, ``arity`` elements
``<``    back-reference to an earlier product record, 32-bit index
``X``    sequence: 32-bit count, then ``count`` elements
``S``    string: 16-bit length, then utf-8 bytes
``I``    32-bit signed integer
``F``    64-bit float
``N``    none
``B``    bool, one byte
=======  ===========================================================

Product records are numbered in the order they are completed. A product
written twice (by identity) is written once and referenced afterwards, so
shared subgraphs and individual UGens keep their identity through a round
trip. All integers are big-endian.

Type tags and arities come from ``synthgraph.registry``: catalog UGens are
registered by the ``@ugen`` decorator, the built-in element types below.
"""

import logging
import struct
from typing import Any, Callable

from . import registry
from .enums import CalculationRate, UGenFlag
from .synthdef import (
    ArityError,
    ChannelProxy,
    Constant,
    GE,
    GESeq,
    OutputProxy,
    Parameter,
    SerializationError,
    SynthDef,
    SynthGraph,
    UGen,
    UGenNode,
    UnknownTypeError,
    detached_from_builders,
)

logger = logging.getLogger(__name__)

MAGIC = b"SGRF"
VERSION = 1

registry.register_type(Parameter, arity=4, type_id=2)
registry.register_type(GESeq, arity=1, type_id=3)
registry.register_type(ChannelProxy, arity=2, type_id=4)
registry.register_type(SynthGraph, arity=2, type_id=5)
registry.register_type(SynthDef, arity=3, type_id=6)
registry.register_type(UGenNode, arity=6, type_id=7)


class Rate:
    """Marks a value to be written with the rate cookie."""

    __slots__ = ("value",)

    def __init__(self, value: CalculationRate | None) -> None:
        self.value = value


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _fields_for(value: Any) -> list[Any]:
    if isinstance(value, UGen):
        fields: list[Any] = [Rate(value.declared_rate), value.special_index]
        fields.extend(value.inputs)
        if value._is_multichannel:
            fields.append(value.channel_count)
        return fields
    if isinstance(value, Parameter):
        return [value.name, [float(x) for x in value.value], int(value.rate), value.lag]
    if isinstance(value, GESeq):
        return [list(value.elements)]
    if isinstance(value, ChannelProxy):
        return [value.source, value.index]
    if isinstance(value, SynthGraph):
        return [list(value.sources), list(value.parameters)]
    if isinstance(value, SynthDef):
        return [
            value.name,
            [[parameter, index] for parameter, index in value.parameters.values()],
            list(value.ugens),
        ]
    if isinstance(value, UGenNode):
        return [
            value.name,
            Rate(value.calculation_rate),
            value.flags.value,
            value.special_index,
            value.channel_count,
            [
                [x.node, x.index] if isinstance(x, OutputProxy) else Constant(x)
                for x in value.inputs
            ],
        ]
    raise SerializationError(f"Cannot encode {value!r}")


class _Encoder:
    def __init__(self) -> None:
        self._chunks: list[bytes] = []
        self._products: dict[int, int] = {}
        # keeps written products alive so their ids stay unique
        self._written: list[Any] = []

    def encode(self, value: Any) -> bytes:
        self._chunks.append(MAGIC + struct.pack(">H", VERSION))
        self.write(value)
        return b"".join(self._chunks)

    def write(self, value: Any) -> None:
        chunks = self._chunks
        if value is None:
            chunks.append(b"N")
        elif isinstance(value, bool):
            chunks.append(b"B" + struct.pack(">?", value))
        elif isinstance(value, Rate):
            rate = -1 if value.value is None else int(value.value)
            chunks.append(b"R" + struct.pack(">b", rate))
        elif isinstance(value, int):
            chunks.append(b"I" + struct.pack(">i", value))
        elif isinstance(value, float):
            chunks.append(b"F" + struct.pack(">d", value))
        elif isinstance(value, str):
            encoded = value.encode("utf-8")
            chunks.append(b"S" + struct.pack(">H", len(encoded)) + encoded)
        elif isinstance(value, Constant):
            chunks.append(b"C" + struct.pack(">d", value.value))
        elif isinstance(value, (list, tuple)):
            chunks.append(b"X" + struct.pack(">I", len(value)))
            for item in value:
                self.write(item)
        else:
            self.write_product(value)

    def write_product(self, value: Any) -> None:
        if (index := self._products.get(id(value))) is not None:
            self._chunks.append(b"<" + struct.pack(">i", index))
            return
        try:
            entry = registry.lookup_class(type(value))
        except KeyError:
            raise UnknownTypeError(f"{type(value).__name__} has no type tag") from None
        fields = _fields_for(value)
        if len(fields) != entry.arity:
            raise ArityError(
                f"{entry.name} has {len(fields)} fields, registered arity is {entry.arity}"
            )
        self._chunks.append(b"P" + struct.pack(">IH", entry.type_id, entry.arity))
        for field in fields:
            self.write(field)
        self._products[id(value)] = len(self._written)
        self._written.append(value)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def _expect(value: Any, type_: type | tuple[type, ...], what: str) -> Any:
    types = type_ if isinstance(type_, tuple) else (type_,)
    # bool is an int subclass but has its own cookie
    if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
        raise SerializationError(f"Expected {what}, got {value!r}")
    return value


def _expect_all(values: Any, type_: type, what: str) -> list[Any]:
    return [_expect(x, type_, what) for x in _expect(values, list, f"a list of {what}")]


def _read_parameter(fields: list[Any]) -> Parameter:
    name, value, rate, lag = fields
    return Parameter(
        name=_expect(name, str, "a parameter name"),
        value=_expect_all(value, float, "parameter values"),
        rate=_expect(rate, int, "a parameter rate"),
        lag=_expect(lag, (float, type(None)), "a lag"),
    )


def _read_ge_seq(fields: list[Any]) -> GESeq:
    return GESeq(*_expect_all(fields[0], GE, "graph elements"))


def _read_channel_proxy(fields: list[Any]) -> ChannelProxy:
    source, index = fields
    return ChannelProxy(
        _expect(source, GE, "a graph element"), _expect(index, int, "a channel index")
    )


def _read_synth_graph(fields: list[Any]) -> SynthGraph:
    sources, parameters = fields
    return SynthGraph(
        _expect_all(sources, GE, "graph elements"),
        _expect_all(parameters, Parameter, "parameters"),
    )


def _read_synthdef(fields: list[Any]) -> SynthDef:
    name, parameters, nodes = fields
    mapping: dict[str, tuple[Parameter, int]] = {}
    for pair in _expect(parameters, list, "a list of parameters"):
        parameter, index = _expect(pair, list, "a parameter entry")
        mapping[_expect(parameter, Parameter, "a parameter").name] = (
            parameter,
            _expect(index, int, "a parameter index"),
        )
    return SynthDef(
        _expect_all(nodes, UGenNode, "nodes"),
        name=_expect(name, (str, type(None)), "a name"),
        parameters=mapping,
    )


def _read_ugen_node(fields: list[Any]) -> UGenNode:
    name, rate, flags, special_index, channel_count, inputs = fields
    calculation_rate = _expect(rate, Rate, "a rate").value
    if calculation_rate is None:
        raise SerializationError(f"Node {name!r} has no calculation rate")
    inputs_: list[Any] = []
    for input_ in _expect(inputs, list, "a list of inputs"):
        if isinstance(input_, Constant):
            inputs_.append(input_.value)
        else:
            node, index = _expect(input_, list, "an input reference")
            _expect(node, UGenNode, "an input node")
            if not 0 <= _expect(index, int, "an output index") < len(node):
                raise SerializationError(f"{node!r} has no output {index}")
            inputs_.append(node[index])
    return UGenNode(
        name=_expect(name, str, "a UGen name"),
        calculation_rate=calculation_rate,
        inputs=inputs_,
        channel_count=_expect(channel_count, int, "a channel count"),
        special_index=_expect(special_index, int, "a special index"),
        flags=UGenFlag(_expect(flags, int, "flags")),
    )


def _read_ugen(cls: type[UGen], fields: list[Any]) -> UGen:
    calculation_rate, special_index, *inputs = fields
    kwargs: dict[str, Any] = {}
    if cls._is_multichannel:
        kwargs["channel_count"] = _expect(
            inputs.pop(), (int, type(None)), "a channel count"
        )
    kwargs.update(
        (key, _expect(input_, GE, "a graph element"))
        for key, input_ in zip(cls._ordered_keys, inputs)
    )
    try:
        return cls(
            calculation_rate=_expect(calculation_rate, Rate, "a rate").value,
            special_index=_expect(special_index, int, "a special index"),
            **kwargs,
        )
    except (TypeError, ValueError) as exception:
        raise SerializationError(f"Cannot rebuild {cls.__name__}: {exception}") from exception


_READERS: dict[type, Callable[[list[Any]], Any]] = {
    Parameter: _read_parameter,
    GESeq: _read_ge_seq,
    ChannelProxy: _read_channel_proxy,
    SynthGraph: _read_synth_graph,
    SynthDef: _read_synthdef,
    UGenNode: _read_ugen_node,
}


class _Decoder:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0
        self._products: list[Any] = []

    def decode(self) -> Any:
        if self._take(4) != MAGIC:
            raise SerializationError("Not a synthgraph stream")
        version = self._unpack(">H")
        if version != VERSION:
            raise SerializationError(f"Unsupported version {version}")
        with detached_from_builders():
            value = self.read()
        if self._offset != len(self._data):
            raise SerializationError(
                f"{len(self._data) - self._offset} trailing bytes after element"
            )
        return value

    def read(self) -> Any:
        cookie = self._take(1)
        if cookie == b"N":
            return None
        if cookie == b"B":
            return self._unpack(">?")
        if cookie == b"R":
            rate = self._unpack(">b")
            if rate == -1:
                return Rate(None)
            try:
                return Rate(CalculationRate(rate))
            except ValueError:
                raise SerializationError(f"Unknown rate {rate}") from None
        if cookie == b"I":
            return self._unpack(">i")
        if cookie == b"F":
            return self._unpack(">d")
        if cookie == b"S":
            return self._take(self._unpack(">H")).decode("utf-8")
        if cookie == b"C":
            return Constant(self._unpack(">d"))
        if cookie == b"X":
            return [self.read() for _ in range(self._unpack(">I"))]
        if cookie == b"<":
            index = self._unpack(">i")
            if not 0 <= index < len(self._products):
                raise SerializationError(f"Dangling back-reference {index}")
            return self._products[index]
        if cookie == b"P":
            return self.read_product()
        raise SerializationError(f"Unknown cookie {cookie!r} at byte {self._offset - 1}")

    def read_product(self) -> Any:
        type_id, arity = self._unpack(">I"), self._unpack(">H")
        try:
            entry = registry.lookup_type_id(type_id)
        except KeyError:
            raise UnknownTypeError(f"Unknown type tag {type_id}") from None
        if arity != entry.arity:
            raise ArityError(
                f"{entry.name} record has {arity} fields, registered arity is {entry.arity}"
            )
        fields = [self.read() for _ in range(arity)]
        if (reader := _READERS.get(entry.cls)) is not None:
            try:
                value = reader(fields)
            except (TypeError, ValueError) as exception:
                raise SerializationError(
                    f"Cannot rebuild {entry.name}: {exception}"
                ) from exception
        elif issubclass(entry.cls, UGen):
            value = _read_ugen(entry.cls, fields)
        else:
            raise UnknownTypeError(f"No reader for {entry.name}")
        self._products.append(value)
        return value

    def _take(self, count: int) -> bytes:
        chunk = self._data[self._offset : self._offset + count]
        if len(chunk) != count:
            raise SerializationError(f"Truncated data at byte {self._offset}")
        self._offset += count
        return chunk

    def _unpack(self, format_: str) -> Any:
        (value,) = struct.unpack(format_, self._take(struct.calcsize(format_)))
        return value


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def encode_graph(graph: SynthGraph) -> bytes:
    """Encode a declarative SynthGraph."""
    return _Encoder().encode(_expect(graph, SynthGraph, "a SynthGraph"))


def decode_graph(data: bytes) -> SynthGraph:
    graph = _expect(_Decoder(data).decode(), SynthGraph, "a SynthGraph")
    logger.debug("Decoded SynthGraph with %d sources", len(graph.sources))
    return graph  # type: ignore[no-any-return]


def encode_synthdef(synthdef: SynthDef) -> bytes:
    """Encode an assembled SynthDef, flags included."""
    return _Encoder().encode(_expect(synthdef, SynthDef, "a SynthDef"))


def decode_synthdef(data: bytes) -> SynthDef:
    synthdef = _Decoder(data).decode()
    return _expect(synthdef, SynthDef, "a SynthDef")  # type: ignore[no-any-return]
