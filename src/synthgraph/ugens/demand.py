"""Demand-rate UGens.

Demand-rate streams only produce values when polled. ``Demand`` and ``Duty``
are the polling UGens; their demand inputs are declared with
``accepts_demand`` so that the builder lets demand-rate streams through.
"""

from ..synthdef import UGen, param, ugen


@ugen(
    ar=True, kr=True, has_done_flag=True, channel_count=lambda counts: counts["source"]
)
class Demand(UGen):
    trigger = param(0, trigger=True)
    reset = param(0)
    source = param(unexpanded=True, accepts_demand=True)


@ugen(dr=True, is_individual=True)
class Drand(UGen):
    repeats = param(1)
    sequence = param(unexpanded=True)


@ugen(dr=True)
class Dseq(UGen):
    repeats = param(1)
    sequence = param(unexpanded=True)


@ugen(dr=True)
class Dser(UGen):
    repeats = param(1)
    sequence = param(unexpanded=True)


@ugen(dr=True)
class Dseries(UGen):
    length = param(float("inf"))
    start = param(1)
    step = param(1)


@ugen(ar=True, kr=True, has_done_flag=True)
class Duty(UGen):
    duration = param(1.0, accepts_demand=True)
    reset = param(0.0, accepts_demand=True)
    level = param(1.0, accepts_demand=True)
    done_action = param(0.0)


@ugen(dr=True, is_individual=True)
class Dwhite(UGen):
    minimum = param(0.0)
    maximum = param(1.0)
    length = param(float("inf"))
