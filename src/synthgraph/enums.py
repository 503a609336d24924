"""Enum types for synthgraph: the rate lattice, capability flags and operators."""

import enum
from collections.abc import Sequence as SequenceABC
from typing import Optional, SupportsFloat, SupportsInt, cast


class CalculationRate(enum.IntEnum):
    """UGen computation rate.

    - ``SCALAR`` (0) -- computed once at synth creation (``.ir``).
    - ``CONTROL`` (1) -- computed once per control block (``.kr``).
    - ``AUDIO`` (2) -- computed every sample (``.ar``).
    - ``DEMAND`` (3) -- computed only when polled by another UGen (``.dr``).

    The first three form a chain, ``SCALAR <= CONTROL <= AUDIO``: a slower
    signal can always be lifted to a faster one. ``DEMAND`` sits outside of
    that chain and never converts implicitly.
    """

    SCALAR = 0
    CONTROL = 1
    AUDIO = 2
    DEMAND = 3

    @classmethod
    def from_expr(cls, expr: object) -> "CalculationRate":
        """Coerce an arbitrary value to a CalculationRate.

        Accepts CalculationRate instances, ParameterRate, numbers (SCALAR),
        rate-token strings (``"ar"``, ``"kr"``, ``"ir"``, ``"dr"``), objects
        exposing a ``calculation_rate`` and sequences (maximum rate).
        """
        if expr is None:
            return cls.SCALAR
        if isinstance(expr, cls):
            return expr
        if isinstance(expr, ParameterRate):
            return {
                ParameterRate.AUDIO: cls.AUDIO,
                ParameterRate.CONTROL: cls.CONTROL,
                ParameterRate.SCALAR: cls.SCALAR,
                ParameterRate.TRIGGER: cls.CONTROL,
            }[expr]
        rate = getattr(expr, "calculation_rate", None)
        if rate is not None:
            return cls.from_expr(rate)
        if isinstance(expr, (int, float, SupportsFloat)):
            return cls.SCALAR
        if isinstance(expr, str):
            tokens = {"ir": cls.SCALAR, "kr": cls.CONTROL, "ar": cls.AUDIO, "dr": cls.DEMAND}
            if expr.lower() in tokens:
                return tokens[expr.lower()]
            return cls[expr.upper()]
        if isinstance(expr, SequenceABC):
            return max_rate(*(cls.from_expr(item) for item in expr))
        return cls(int(cast(SupportsInt, expr)))

    def can_coerce_to(self, target: "CalculationRate") -> bool:
        """True if a signal at this rate may feed an input running at ``target``."""
        if self == target:
            return True
        if CalculationRate.DEMAND in (self, target):
            return False
        return self < target

    @property
    def token(self) -> str:
        return {0: "ir", 1: "kr", 2: "ar", 3: "dr"}[self.value]


# ``None`` stands for the undefined rate: a UGen constructed with ``.new()``
# whose rate is taken from its inputs when the graph is built.
MaybeRate = Optional[CalculationRate]


def max_rate(*rates: CalculationRate) -> CalculationRate:
    """The highest of ``rates``; SCALAR when empty."""
    return max(rates, default=CalculationRate.SCALAR)


class ParameterRate(enum.IntEnum):
    """SynthDef parameter rate.

    Governs which Control UGen type a parameter is gathered into:

    - ``SCALAR`` (0) -- ``Control.ir``.
    - ``TRIGGER`` (1) -- ``TrigControl``.
    - ``AUDIO`` (2) -- ``AudioControl``.
    - ``CONTROL`` (3) -- ``Control.kr`` (or ``LagControl`` when lagged).
    """

    SCALAR = 0
    TRIGGER = 1
    AUDIO = 2
    CONTROL = 3

    @classmethod
    def from_expr(cls, expr: object) -> "ParameterRate":
        if expr is None:
            return cls.CONTROL
        if isinstance(expr, cls):
            return expr
        if isinstance(expr, str):
            token_map = {"ar": cls.AUDIO, "kr": cls.CONTROL, "ir": cls.SCALAR, "tr": cls.TRIGGER}
            lower = expr.lower()
            if lower in token_map:
                return token_map[lower]
            return cls[expr.upper()]
        return cls(int(cast(SupportsInt, expr)))


class UGenFlag(enum.Flag):
    """Capability set attached to a catalog UGen type.

    - ``INDIVIDUAL`` -- two instances are distinct even with equal inputs
      (random seeds, bus and buffer writers).
    - ``SIDE_EFFECT`` -- writes to buses/buffers or talks to the client; such
      nodes are never removed from a graph.
    - ``DONE_FLAG`` -- sets a done flag readable by ``Done`` and friends.
    - ``PURE`` -- may be removed when nothing consumes its outputs.
    """

    NONE = 0
    INDIVIDUAL = enum.auto()
    SIDE_EFFECT = enum.auto()
    DONE_FLAG = enum.auto()
    PURE = enum.auto()


class BinaryOperator(enum.IntEnum):
    """BinaryOpUGen special indices."""

    ADDITION = 0
    SUBTRACTION = 1
    MULTIPLICATION = 2
    INTEGER_DIVISION = 3
    FLOAT_DIVISION = 4
    MODULO = 5
    EQUAL = 6
    NOT_EQUAL = 7
    LESS_THAN = 8
    GREATER_THAN = 9
    LESS_THAN_OR_EQUAL = 10
    GREATER_THAN_OR_EQUAL = 11
    MINIMUM = 12
    MAXIMUM = 13
    POWER = 25
    CLIP2 = 42
    FOLD2 = 44
    WRAP2 = 45

    @classmethod
    def from_expr(cls, expr: object) -> "BinaryOperator":
        if isinstance(expr, cls):
            return expr
        if isinstance(expr, str):
            return cls[expr.upper()]
        return cls(int(cast(SupportsInt, expr)))


class UnaryOperator(enum.IntEnum):
    """UnaryOpUGen special indices."""

    NEGATIVE = 0
    ABSOLUTE_VALUE = 5
    CEILING = 8
    FLOOR = 9
    SQUARED = 12
    SQUARE_ROOT = 14
    RECIPROCAL = 16
    MIDICPS = 17
    CPSMIDI = 18
    DBAMP = 21
    AMPDB = 22
    TANH = 36
    DISTORT = 42
    SOFTCLIP = 43

    @classmethod
    def from_expr(cls, expr: object) -> "UnaryOperator":
        if isinstance(expr, cls):
            return expr
        if isinstance(expr, str):
            return cls[expr.upper()]
        return cls(int(cast(SupportsInt, expr)))


class DoneAction(enum.IntEnum):
    """Action taken by the server when a done-flag UGen finishes."""

    NOTHING = 0
    PAUSE_SYNTH = 1
    FREE_SYNTH = 2
    FREE_SYNTH_AND_PRECEDING_NODE = 3
    FREE_SYNTH_AND_FOLLOWING_NODE = 4
    FREE_SYNTH_AND_ALL_SIBLING_NODES = 13
    FREE_SYNTH_AND_ENCLOSING_GROUP = 14


class EnvelopeShape(enum.IntEnum):
    """Interpolation curve shape for envelope segments.

    A numeric curve passed to ``Envelope`` is treated as ``CUSTOM`` with that
    curvature.
    """

    STEP = 0
    LINEAR = 1
    EXPONENTIAL = 2
    SINE = 3
    WELCH = 4
    CUSTOM = 5
    SQUARED = 6
    CUBED = 7
    HOLD = 8

    @classmethod
    def from_expr(cls, expr: object) -> "EnvelopeShape":
        if expr is None:
            return cls.LINEAR
        if isinstance(expr, cls):
            return expr
        if isinstance(expr, str):
            return cls[expr.upper()]
        return cls(int(cast(SupportsInt, expr)))
