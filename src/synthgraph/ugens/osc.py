"""Oscillator UGens."""

from ..synthdef import UGen, param, ugen


@ugen(ar=True, kr=True, is_pure=True)
class Impulse(UGen):
    frequency = param(440.0)
    phase = param(0.0)


@ugen(ar=True, kr=True, is_pure=True)
class LFPulse(UGen):
    frequency = param(440.0)
    initial_phase = param(0.0)
    width = param(0.5)


@ugen(ar=True, kr=True, is_pure=True)
class Saw(UGen):
    frequency = param(440.0)


@ugen(ar=True, kr=True, is_pure=True)
class SinOsc(UGen):
    frequency = param(440.0)
    phase = param(0.0)
