"""
Envelope class and EnvGen UGen for synthgraph.
"""

import itertools
from collections.abc import Iterator, Sequence
from typing import Any

from .enums import EnvelopeShape
from .synthdef import GE, GEInput, UGen, UGenSerializable, param, ugen


def _zip_cycled(
    *args: Sequence[Any],
) -> Iterator[tuple[Any, ...]]:
    maximum_i = max(len(a) for a in args) - 1
    cycles = [itertools.cycle(a) for a in args]
    for i, result in enumerate(zip(*cycles)):
        yield result
        if i == maximum_i:
            break


def _as_level(value: GEInput) -> GEInput:
    if isinstance(value, (GE, Sequence)):
        return value
    return float(value)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(UGenSerializable):
    """An envelope specification for use with EnvGen.

    Levels, durations and curves may be graph elements. A multichannel level
    makes the EnvGen reading this envelope expand into one EnvGen per
    channel.
    """

    def __init__(
        self,
        amplitudes: Sequence[GEInput] = (0, 1, 0),
        durations: Sequence[GEInput] = (1, 1),
        curves: Sequence[EnvelopeShape | GEInput | str | None]
        | EnvelopeShape
        | float
        | str
        | None = (
            EnvelopeShape.LINEAR,
            EnvelopeShape.LINEAR,
        ),
        release_node: int | None = None,
        loop_node: int | None = None,
        offset: GEInput = 0.0,
    ) -> None:
        if len(amplitudes) <= 1:
            raise ValueError(
                f"amplitudes must have at least 2 values, got {len(amplitudes)}"
            )
        if not (len(durations) == (len(amplitudes) - 1)):
            raise ValueError(
                f"durations length ({len(durations)}) must equal amplitudes length - 1 ({len(amplitudes) - 1})"
            )
        if curves is None or isinstance(curves, (int, float, str, EnvelopeShape, GE)):
            curves = [curves]
        self._release_node = release_node
        self._loop_node = loop_node
        self._offset = offset
        self._initial_amplitude = _as_level(amplitudes[0])
        self._amplitudes = tuple(_as_level(x) for x in amplitudes[1:])
        self._durations = tuple(_as_level(x) for x in durations)
        curves_: list[EnvelopeShape | GEInput] = []
        for x in curves:
            if isinstance(x, (EnvelopeShape, GE)):
                curves_.append(x)
            elif isinstance(x, str) or x is None:
                curves_.append(EnvelopeShape.from_expr(x))
            else:
                curves_.append(float(x))  # type: ignore[arg-type]
        self._curves = tuple(curves_)
        self._envelope_segments = tuple(
            _zip_cycled(self._amplitudes, self._durations, self._curves)
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Envelope):
            return False
        return self.serialize() == other.serialize()

    def __hash__(self) -> int:
        return hash((Envelope, repr(self.serialize())))

    def __repr__(self) -> str:
        return f"<Envelope: {len(self._envelope_segments)} segments>"

    @classmethod
    def adsr(
        cls,
        attack_time: GEInput = 0.01,
        decay_time: GEInput = 0.3,
        sustain: float = 0.5,
        release_time: GEInput = 1.0,
        peak: float = 1.0,
        curve: float = -4.0,
        bias: float = 0.0,
    ) -> "Envelope":
        amplitudes = [x + bias for x in [0, peak, peak * sustain, 0]]
        durations = [attack_time, decay_time, release_time]
        return Envelope(
            amplitudes=amplitudes,
            durations=durations,
            curves=[curve],
            release_node=2,
        )

    @classmethod
    def asr(
        cls,
        attack_time: GEInput = 0.01,
        sustain: GEInput = 1.0,
        release_time: GEInput = 1.0,
        curve: float = -4.0,
    ) -> "Envelope":
        return Envelope(
            amplitudes=[0, sustain, 0],
            durations=[attack_time, release_time],
            curves=[curve],
            release_node=1,
        )

    @classmethod
    def linen(
        cls,
        attack_time: GEInput = 0.01,
        sustain_time: GEInput = 1.0,
        release_time: GEInput = 1.0,
        level: GEInput = 1.0,
        curve: float | int = 1,
    ) -> "Envelope":
        return Envelope(
            amplitudes=[0, level, level, 0],
            durations=[attack_time, sustain_time, release_time],
            curves=[curve],
        )

    @classmethod
    def percussive(
        cls,
        attack_time: GEInput = 0.01,
        release_time: GEInput = 1.0,
        amplitude: GEInput = 1.0,
        curve: EnvelopeShape | GEInput | str = -4.0,
    ) -> "Envelope":
        return Envelope(
            amplitudes=[0, amplitude, 0],
            durations=[attack_time, release_time],
            curves=[curve],
        )

    @classmethod
    def triangle(
        cls,
        duration: float = 1.0,
        amplitude: GEInput = 1.0,
    ) -> "Envelope":
        duration = duration / 2.0
        return Envelope(amplitudes=[0, amplitude, 0], durations=[duration, duration])

    def serialize(self, **kwargs: Any) -> list[GEInput]:
        result: list[GEInput] = []
        result.append(self.initial_amplitude)
        result.append(len(self.envelope_segments))
        result.append(-99 if self.release_node is None else self.release_node)
        result.append(-99 if self.loop_node is None else self.loop_node)
        for amplitude, duration, curve in self._envelope_segments:
            result.append(amplitude)
            result.append(duration)
            if isinstance(curve, EnvelopeShape):
                shape = int(curve)
                curve = 0.0
            else:
                shape = int(EnvelopeShape.CUSTOM)
            result.append(shape)
            result.append(curve)
        return result

    @property
    def amplitudes(self) -> tuple[GEInput, ...]:
        return (self.initial_amplitude,) + tuple(s[0] for s in self.envelope_segments)

    @property
    def curves(self) -> tuple[EnvelopeShape | GEInput, ...]:
        return tuple(s[2] for s in self.envelope_segments)

    @property
    def duration(self) -> GEInput:
        return sum(self.durations)  # type: ignore[arg-type]

    @property
    def durations(self) -> tuple[GEInput, ...]:
        return tuple(s[1] for s in self.envelope_segments)

    @property
    def envelope_segments(self) -> tuple[tuple[Any, ...], ...]:
        return self._envelope_segments

    @property
    def initial_amplitude(self) -> GEInput:
        return self._initial_amplitude

    @property
    def loop_node(self) -> int | None:
        return self._loop_node

    @property
    def offset(self) -> GEInput:
        return self._offset

    @property
    def release_node(self) -> int | None:
        return self._release_node


# ---------------------------------------------------------------------------
# EnvGen UGen
# ---------------------------------------------------------------------------


@ugen(ar=True, kr=True, has_done_flag=True)
class EnvGen(UGen):
    gate = param(1.0)
    level_scale = param(1.0)
    level_bias = param(0.0)
    time_scale = param(1.0)
    done_action = param(0.0)
    envelope = param(unexpanded=True)
