"""The UGen catalog."""

from .basic import Mix, MulAdd, Sum3, Sum4
from .demand import Demand, Drand, Dseq, Dser, Dseries, Duty, Dwhite
from .filters import BPF, HPF, LPF, RLPF
from .inout import In, LocalIn, LocalOut, Out, ReplaceOut
from .lines import A2K, DC, K2A, T2A, T2K, Line, LinLin, XLine
from .noise import Dust, WhiteNoise
from .osc import Impulse, LFPulse, Saw, SinOsc
from .panning import Pan2
from .triggers import Done, FreeSelf, FreeSelfWhenDone, Latch, Poll, SendTrig, Trig

__all__ = [
    "A2K",
    "BPF",
    "DC",
    "Demand",
    "Done",
    "Drand",
    "Dseq",
    "Dser",
    "Dseries",
    "Dust",
    "Duty",
    "Dwhite",
    "FreeSelf",
    "FreeSelfWhenDone",
    "HPF",
    "Impulse",
    "In",
    "K2A",
    "LFPulse",
    "LPF",
    "Latch",
    "Line",
    "LinLin",
    "LocalIn",
    "LocalOut",
    "Mix",
    "MulAdd",
    "Out",
    "Pan2",
    "Poll",
    "RLPF",
    "ReplaceOut",
    "Saw",
    "SendTrig",
    "SinOsc",
    "Sum3",
    "Sum4",
    "T2A",
    "T2K",
    "Trig",
    "WhiteNoise",
    "XLine",
]
