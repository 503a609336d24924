"""Basic utility UGens: MulAdd, Sum3, Sum4, Mix."""

import itertools
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from .. import registry
from ..enums import BinaryOperator, CalculationRate
from ..synthdef import (
    GE,
    BinaryOpUGen,
    Constant,
    GEInput,
    GESeq,
    PseudoUGen,
    UGen,
    UGenIn,
    UGenInLike,
    as_ge,
    param,
    ugen,
)

if TYPE_CHECKING:
    from ..builder import NodeRequest, UGenGraphBuilder


def _group_by_count(iterable: Iterable[Any], count: int) -> list[list[Any]]:
    iterator = iter(iterable)
    groups: list[list[Any]] = []
    while True:
        group = list(itertools.islice(iterator, count))
        if not group:
            break
        groups.append(group)
    return groups


@ugen(new=True, is_pure=True, rate_from="max")
class MulAdd(UGen):
    source = param()
    multiplier = param(1.0)
    addend = param(0.0)


def _mul_add_inputs_are_valid(
    source: UGenIn, multiplier: UGenIn, addend: UGenIn
) -> bool:
    if CalculationRate.from_expr(source) == CalculationRate.AUDIO:
        return True
    return (
        CalculationRate.from_expr(source) == CalculationRate.CONTROL
        and CalculationRate.from_expr(multiplier)
        in (CalculationRate.CONTROL, CalculationRate.SCALAR)
        and CalculationRate.from_expr(addend)
        in (CalculationRate.CONTROL, CalculationRate.SCALAR)
    )


@registry.register_factory("MulAdd")
def _make_mul_add(builder: "UGenGraphBuilder", request: "NodeRequest") -> UGenInLike:
    """Fold trivial multipliers and addends into cheaper nodes."""
    (_, source), (_, multiplier), (_, addend) = request.inputs

    def binary(special_index: BinaryOperator, left: Any, right: Any) -> UGenInLike:
        return builder.construct(
            request._replace(
                ugen_class=BinaryOpUGen,
                special_index=special_index,
                inputs=(("left", left), ("right", right)),
            )
        )

    if multiplier == 0.0:
        return addend
    if addend == 0.0:
        return binary(BinaryOperator.MULTIPLICATION, source, multiplier)
    if multiplier == -1.0:
        return binary(BinaryOperator.SUBTRACTION, addend, source)
    if multiplier == 1.0:
        return binary(BinaryOperator.ADDITION, source, addend)
    if _mul_add_inputs_are_valid(source, multiplier, addend):
        return builder.make_default(request)
    # source must be the fastest input; multiplication commutes
    if _mul_add_inputs_are_valid(multiplier, source, addend):
        return builder.make_default(
            request._replace(
                inputs=(
                    ("source", multiplier),
                    ("multiplier", source),
                    ("addend", addend),
                )
            )
        )
    return binary(
        BinaryOperator.ADDITION,
        binary(BinaryOperator.MULTIPLICATION, source, multiplier),
        addend,
    )


@ugen(new=True, is_pure=True, rate_from="max")
class Sum3(UGen):
    input_one = param()
    input_two = param()
    input_three = param()


@ugen(new=True, is_pure=True, rate_from="max")
class Sum4(UGen):
    input_one = param()
    input_two = param()
    input_three = param()
    input_four = param()


_SUM_KEYS = ("input_one", "input_two", "input_three", "input_four")


@registry.register_factory("Sum3")
@registry.register_factory("Sum4")
def _make_sum(builder: "UGenGraphBuilder", request: "NodeRequest") -> UGenInLike:
    """Drop zero terms and order the rest from fastest to slowest rate."""
    values = [
        value
        for _, value in request.inputs
        if not (isinstance(value, float) and value == 0.0)
    ]
    if not values:
        return 0.0
    if len(values) == 1:
        return values[0]
    if len(values) == 2:
        return builder.construct(
            request._replace(
                ugen_class=BinaryOpUGen,
                special_index=BinaryOperator.ADDITION,
                inputs=(("left", values[0]), ("right", values[1])),
            )
        )
    values.sort(key=CalculationRate.from_expr, reverse=True)
    return builder.make_default(
        request._replace(
            ugen_class=Sum3 if len(values) == 3 else Sum4,
            inputs=tuple(zip(_SUM_KEYS, values)),
        )
    )


class Mix(PseudoUGen):
    """A down-to-mono signal mixer.

    Sums the channels of ``sources`` four at a time. Channels which are
    themselves multichannel are summed element-wise.
    """

    @classmethod
    def new(cls, sources: GEInput) -> GE:
        channels = list(as_ge(sources))
        if not channels:
            return Constant(0.0)
        summed_sources: list[GE] = []
        for part in _group_by_count(channels, 4):
            if len(part) == 4:
                summed_sources.append(
                    Sum4.new(  # type: ignore[attr-defined]
                        input_one=part[0],
                        input_two=part[1],
                        input_three=part[2],
                        input_four=part[3],
                    )
                )
            elif len(part) == 3:
                summed_sources.append(
                    Sum3.new(  # type: ignore[attr-defined]
                        input_one=part[0],
                        input_two=part[1],
                        input_three=part[2],
                    )
                )
            elif len(part) == 2:
                summed_sources.append(part[0] + part[1])
            else:
                summed_sources.append(part[0])
        if len(summed_sources) == 1:
            return summed_sources[0]
        return Mix.new(summed_sources)

    @classmethod
    def multichannel(cls, sources: GEInput, channel_count: int) -> GE:
        """Mix interleaved ``sources`` down to ``channel_count`` channels."""
        parts = _group_by_count(as_ge(sources), channel_count)
        return GESeq(*(cls.new(list(columns)) for columns in zip(*parts)))
