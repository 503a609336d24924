"""Panning UGens."""

from ..synthdef import GE, UGen, param, ugen


@ugen(ar=True, kr=True, channel_count=2)
class Pan2(UGen):
    source = param(match_rate=True)
    position = param(0.0)
    level = param(1.0)

    @property
    def left(self) -> GE:
        return self[0]

    @property
    def right(self) -> GE:
        return self[1]
