"""Noise UGens.

Each instance draws from the synth's random stream, so two equal-looking
noise sources are still two distinct signals.
"""

from ..synthdef import UGen, param, ugen


@ugen(ar=True, kr=True, is_individual=True)
class Dust(UGen):
    density = param(0.0)


@ugen(ar=True, kr=True, is_individual=True)
class WhiteNoise(UGen):
    pass
