"""SCgf binary compiler and decompiler for synthgraph."""

from __future__ import annotations

import logging
import struct
from typing import TYPE_CHECKING, Any

from . import registry
from .enums import CalculationRate, ParameterRate, UGenFlag

if TYPE_CHECKING:
    from .synthdef import OutputProxy, SynthDef, UGenNode

logger = logging.getLogger(__name__)


def _compile_constants(synthdef: SynthDef) -> bytes:
    return b"".join(
        [
            _encode_unsigned_int_32bit(len(synthdef.constants)),
            *(_encode_float(constant) for constant in synthdef.constants),
        ]
    )


def _compile_parameters(synthdef: SynthDef) -> bytes:
    values = [0.0] * sum(len(control) for control in synthdef.controls)
    for parameter, index in synthdef.parameters.values():
        values[index : index + len(parameter.value)] = parameter.value
    result = [_encode_unsigned_int_32bit(len(values))]
    result.extend(_encode_float(value) for value in values)
    result.append(_encode_unsigned_int_32bit(len(synthdef.parameters)))
    for name, (_, index) in synthdef.parameters.items():
        result.append(_encode_string(name) + _encode_unsigned_int_32bit(index))
    return b"".join(result)


def _compile_synthdef(synthdef: SynthDef, name: str) -> bytes:
    return b"".join(
        [
            _encode_string(name),
            _compile_ugen_graph(synthdef),
        ]
    )


def _compile_ugen(ugen: UGenNode, synthdef: SynthDef) -> bytes:
    return b"".join(
        [
            _encode_string(ugen.name),
            _encode_unsigned_int_8bit(ugen.calculation_rate),
            _encode_unsigned_int_32bit(len(ugen.inputs)),
            _encode_unsigned_int_32bit(len(ugen)),
            _encode_unsigned_int_16bit(int(ugen.special_index)),
            *(_compile_ugen_input_spec(input_, synthdef) for input_ in ugen.inputs),
            *(
                _encode_unsigned_int_8bit(ugen.calculation_rate)
                for _ in range(len(ugen))
            ),
        ]
    )


def _compile_ugens(synthdef: SynthDef) -> bytes:
    return b"".join(
        [
            _encode_unsigned_int_32bit(len(synthdef.ugens)),
            *(_compile_ugen(ugen, synthdef) for ugen in synthdef.ugens),
        ]
    )


def _compile_ugen_graph(synthdef: SynthDef) -> bytes:
    return b"".join(
        [
            _compile_constants(synthdef),
            _compile_parameters(synthdef),
            _compile_ugens(synthdef),
            _encode_unsigned_int_16bit(0),  # no variants
        ]
    )


def _compile_ugen_input_spec(input_: OutputProxy | float, synthdef: SynthDef) -> bytes:
    if isinstance(input_, float):
        return _encode_unsigned_int_32bit(0xFFFFFFFF) + _encode_unsigned_int_32bit(
            synthdef.constant_index(input_)
        )
    else:
        return _encode_unsigned_int_32bit(
            synthdef.ugen_index(input_.node)
        ) + _encode_unsigned_int_32bit(input_.index)


def _encode_string(value: str) -> bytes:
    return struct.pack(">B", len(value)) + value.encode("ascii")


def _encode_float(value: float) -> bytes:
    return struct.pack(">f", value)


def _encode_unsigned_int_8bit(value: int) -> bytes:
    return struct.pack(">B", value)


def _encode_unsigned_int_16bit(value: int) -> bytes:
    return struct.pack(">H", value)


def _encode_unsigned_int_32bit(value: int) -> bytes:
    return struct.pack(">I", value)


def compile_synthdefs(
    synthdef: SynthDef,
    *synthdefs: SynthDef,
    use_anonymous_names: bool = False,
) -> bytes:
    synthdefs_ = (synthdef,) + synthdefs
    return b"".join(
        [
            b"SCgf",
            _encode_unsigned_int_32bit(2),
            _encode_unsigned_int_16bit(len(synthdefs_)),
            *(
                _compile_synthdef(
                    sd,
                    (
                        sd.anonymous_name
                        if not sd.name or use_anonymous_names
                        else sd.name
                    ),
                )
                for sd in synthdefs_
            ),
        ]
    )


# ---------------------------------------------------------------------------
# Decompiler
# ---------------------------------------------------------------------------


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def read(self, format_: str) -> Any:
        from .synthdef import SerializationError

        try:
            (value,) = struct.unpack_from(format_, self.data, self.offset)
        except struct.error:
            raise SerializationError(
                f"Truncated SCgf data at byte {self.offset}"
            ) from None
        self.offset += struct.calcsize(format_)
        return value

    def read_string(self) -> str:
        length = self.read(">B")
        value = self.data[self.offset : self.offset + length]
        if len(value) != length:
            from .synthdef import SerializationError

            raise SerializationError(f"Truncated SCgf data at byte {self.offset}")
        self.offset += length
        return value.decode("ascii")


def _flags_for_name(name: str) -> UGenFlag:
    try:
        entry = registry.lookup_type_id(registry.type_id_for_name(name))
    except KeyError:
        return UGenFlag.NONE
    return getattr(entry.cls, "_flags", UGenFlag.NONE)


def _parameter_rate(control: UGenNode) -> ParameterRate:
    if control.name == "TrigControl":
        return ParameterRate.TRIGGER
    if control.name == "AudioControl":
        return ParameterRate.AUDIO
    if control.calculation_rate == CalculationRate.SCALAR:
        return ParameterRate.SCALAR
    return ParameterRate.CONTROL


def _decompile_synthdef(reader: _Reader) -> SynthDef:
    from .synthdef import (
        OutputProxy,
        Parameter,
        SerializationError,
        SynthDef,
        UGenNode,
    )

    name = reader.read_string()
    constants = [reader.read(">f") for _ in range(reader.read(">I"))]
    values = [reader.read(">f") for _ in range(reader.read(">I"))]
    names: list[tuple[str, int]] = []
    for _ in range(reader.read(">I")):
        names.append((reader.read_string(), reader.read(">I")))
    nodes: list[UGenNode] = []
    for _ in range(reader.read(">I")):
        ugen_name = reader.read_string()
        calculation_rate = CalculationRate(reader.read(">B"))
        input_count = reader.read(">I")
        output_count = reader.read(">I")
        special_index = reader.read(">H")
        inputs: list[Any] = []
        for _ in range(input_count):
            ugen_index, output_index = reader.read(">I"), reader.read(">I")
            try:
                if ugen_index == 0xFFFFFFFF:
                    inputs.append(constants[output_index])
                else:
                    inputs.append(OutputProxy(nodes[ugen_index], output_index))
            except IndexError:
                raise SerializationError(
                    f"{ugen_name} reads from an undefined input"
                ) from None
        for _ in range(output_count):
            reader.read(">B")
        nodes.append(
            UGenNode(
                name=ugen_name,
                calculation_rate=calculation_rate,
                inputs=inputs,
                channel_count=output_count,
                special_index=special_index,
                flags=_flags_for_name(ugen_name),
            )
        )
    for _ in range(reader.read(">H")):
        reader.read_string()
        reader.offset += 4 * len(values)
    controls = [
        x for x in nodes if x.name in ("Control", "AudioControl", "LagControl", "TrigControl")
    ]
    parameters: dict[str, tuple[Parameter, int]] = {}
    indices = sorted(index for _, index in names)
    for parameter_name, index in names:
        for control in controls:
            if control.special_index <= index < control.special_index + len(control):
                break
        else:
            raise SerializationError(f"Parameter {parameter_name} has no control")
        stop = control.special_index + len(control)
        for other in indices:
            if index < other < stop:
                stop = other
                break
        lag = None
        if control.name == "LagControl":
            lag = control.inputs[index - control.special_index] or None
        parameter = Parameter(
            name=parameter_name,
            value=values[index:stop],
            rate=_parameter_rate(control),
            lag=lag,  # type: ignore[arg-type]
        )
        parameters[parameter_name] = (parameter, index)
    logger.debug("Decompiled %s: %d nodes", name, len(nodes))
    return SynthDef(nodes, name=name, parameters=parameters)


def decompile_synthdefs(data: bytes) -> list[SynthDef]:
    """Read SynthDefs back from SCgf bytes.

    SCgf does not carry flags: they are restored from the catalog by UGen
    name where possible.
    """
    from .synthdef import SerializationError

    reader = _Reader(data)
    if data[:4] != b"SCgf":
        raise SerializationError("Not SCgf data")
    reader.offset = 4
    version = reader.read(">I")
    if version != 2:
        raise SerializationError(f"Unsupported SCgf version {version}")
    return [_decompile_synthdef(reader) for _ in range(reader.read(">H"))]
