"""Line, level and rate conversion UGens."""

from ..synthdef import GE, GEInput, PseudoUGen, UGen, param, ugen


@ugen(kr=True, is_pure=True)
class A2K(UGen):
    source = param()


@ugen(ar=True, kr=True, is_pure=True)
class DC(UGen):
    source = param()


@ugen(ar=True, is_pure=True)
class K2A(UGen):
    source = param()


@ugen(ar=True, kr=True, has_done_flag=True)
class Line(UGen):
    start = param(0.0)
    stop = param(1.0)
    duration = param(1.0)
    done_action = param(0)


@ugen(ar=True, is_pure=True)
class T2A(UGen):
    source = param()


@ugen(kr=True, is_pure=True)
class T2K(UGen):
    source = param()


@ugen(ar=True, kr=True, has_done_flag=True)
class XLine(UGen):
    start = param(1.0)
    stop = param(2.0)
    duration = param(1.0)
    done_action = param(0)


class LinLin(PseudoUGen):
    """Linear-to-linear range mapping."""

    @staticmethod
    def _map(
        source: GEInput,
        input_minimum: GEInput,
        input_maximum: GEInput,
        output_minimum: GEInput,
        output_maximum: GEInput,
    ) -> GE:
        from .basic import MulAdd

        scale = (output_maximum - output_minimum) / (input_maximum - input_minimum)  # type: ignore[operator]
        offset = output_minimum - (scale * input_minimum)
        return MulAdd.new(source=source, multiplier=scale, addend=offset)  # type: ignore[attr-defined,no-any-return]

    @classmethod
    def ar(
        cls,
        *,
        source: GEInput,
        input_minimum: GEInput = 0.0,
        input_maximum: GEInput = 1.0,
        output_minimum: GEInput = 1.0,
        output_maximum: GEInput = 2.0,
    ) -> GE:
        return cls._map(
            source, input_minimum, input_maximum, output_minimum, output_maximum
        )

    @classmethod
    def kr(
        cls,
        *,
        source: GEInput,
        input_minimum: GEInput = 0.0,
        input_maximum: GEInput = 1.0,
        output_minimum: GEInput = 1.0,
        output_maximum: GEInput = 2.0,
    ) -> GE:
        return cls._map(
            source, input_minimum, input_maximum, output_minimum, output_maximum
        )
