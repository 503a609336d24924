"""synthgraph -- declarative synth graphs compiled to ordered UGen lists."""

__version__ = "0.1.0"

from .enums import (
    BinaryOperator,
    CalculationRate,
    DoneAction,
    EnvelopeShape,
    ParameterRate,
    UGenFlag,
    UnaryOperator,
)
from .synthdef import (
    ArityError,
    BroadcastMismatchError,
    ChannelIndexError,
    ChannelProxy,
    Constant,
    GE,
    GESeq,
    OutputProxy,
    Parameter,
    PseudoUGen,
    RateMismatchError,
    SerializationError,
    SynthDef,
    SynthDefBuilder,
    SynthDefError,
    SynthGraph,
    UGen,
    UGenInGroup,
    UGenNode,
    UnknownTypeError,
    control,
    flat_outputs,
    param,
    synthdef,
    ugen,
)
from .builder import BuildOptions, UGenGraphBuilder, build_synthdef
from .compiler import compile_synthdefs, decompile_synthdefs
from .envelopes import EnvGen, Envelope
from .serial import decode_graph, decode_synthdef, encode_graph, encode_synthdef
from .ugens import *  # noqa: F403
from .ugens import __all__ as _ugens_all

__all__ = [
    "ArityError",
    "BinaryOperator",
    "BroadcastMismatchError",
    "BuildOptions",
    "CalculationRate",
    "ChannelIndexError",
    "ChannelProxy",
    "Constant",
    "DoneAction",
    "EnvGen",
    "Envelope",
    "EnvelopeShape",
    "GE",
    "GESeq",
    "OutputProxy",
    "Parameter",
    "ParameterRate",
    "PseudoUGen",
    "RateMismatchError",
    "SerializationError",
    "SynthDef",
    "SynthDefBuilder",
    "SynthDefError",
    "SynthGraph",
    "UGen",
    "UGenFlag",
    "UGenGraphBuilder",
    "UGenInGroup",
    "UGenNode",
    "UnaryOperator",
    "UnknownTypeError",
    "build_synthdef",
    "compile_synthdefs",
    "control",
    "decode_graph",
    "decode_synthdef",
    "decompile_synthdefs",
    "encode_graph",
    "encode_synthdef",
    "flat_outputs",
    "param",
    "synthdef",
    "ugen",
] + _ugens_all
