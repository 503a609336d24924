"""Trigger, done-flag and client-notification UGens."""

from ..enums import CalculationRate
from ..synthdef import GE, GEInput, UGen, param, ugen


@ugen(kr=True)
class Done(UGen):
    source = param()


@ugen(kr=True, has_side_effect=True)
class FreeSelf(UGen):
    trigger = param()


@ugen(kr=True, has_side_effect=True)
class FreeSelfWhenDone(UGen):
    source = param()


@ugen(ar=True, kr=True)
class Latch(UGen):
    source = param()
    trigger = param(0)


@ugen(ar=True, kr=True, has_side_effect=True, is_individual=True)
class Poll(UGen):
    trigger = param()
    source = param()
    trigger_id = param(-1)
    label = param(unexpanded=True)

    @staticmethod
    def _encode_label(label: str | None, source: GEInput) -> list[float]:
        if label is None:
            label = type(source).__name__ if isinstance(source, UGen) else "Poll"
        encoded = label.encode("ascii")
        return [float(len(encoded)), *(float(x) for x in encoded)]

    @classmethod
    def ar(
        cls,
        *,
        trigger: GEInput,
        source: GEInput,
        trigger_id: GEInput = -1,
        label: str | None = None,
    ) -> GE:
        return cls(
            calculation_rate=CalculationRate.AUDIO,
            trigger=trigger,
            source=source,
            trigger_id=trigger_id,
            label=cls._encode_label(label, source),
        )

    @classmethod
    def kr(
        cls,
        *,
        trigger: GEInput,
        source: GEInput,
        trigger_id: GEInput = -1,
        label: str | None = None,
    ) -> GE:
        return cls(
            calculation_rate=CalculationRate.CONTROL,
            trigger=trigger,
            source=source,
            trigger_id=trigger_id,
            label=cls._encode_label(label, source),
        )


@ugen(ar=True, kr=True, has_side_effect=True)
class SendTrig(UGen):
    trigger = param()
    id_ = param(0)
    value = param(0.0)


@ugen(ar=True, kr=True)
class Trig(UGen):
    source = param()
    duration = param(0.1)
