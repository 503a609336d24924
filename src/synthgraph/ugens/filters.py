"""Filter UGens."""

from ..synthdef import UGen, param, ugen


@ugen(ar=True, kr=True, is_pure=True)
class BPF(UGen):
    source = param(match_rate=True)
    frequency = param(440.0)
    reciprocal_of_q = param(1.0)


@ugen(ar=True, kr=True, is_pure=True)
class HPF(UGen):
    source = param(match_rate=True)
    frequency = param(440.0)


@ugen(ar=True, kr=True, is_pure=True)
class LPF(UGen):
    source = param(match_rate=True)
    frequency = param(440.0)


@ugen(ar=True, kr=True, is_pure=True)
class RLPF(UGen):
    source = param(match_rate=True)
    frequency = param(440.0)
    reciprocal_of_q = param(1.0)
