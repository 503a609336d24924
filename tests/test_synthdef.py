"""Tests for graph elements, parameters, operators and SCgf compilation."""

import struct

import pytest

from synthgraph import (
    BinaryOperator,
    CalculationRate,
    ChannelIndexError,
    ChannelProxy,
    Constant,
    GESeq,
    Parameter,
    ParameterRate,
    SynthDef,
    SynthDefBuilder,
    SynthDefError,
    UGenFlag,
    UGenNode,
    UnaryOperator,
    compile_synthdefs,
    control,
    decompile_synthdefs,
    synthdef,
)
from synthgraph.synthdef import BinaryOpUGen, SerializationError, UnaryOpUGen
from synthgraph.ugens import A2K, LPF, Out, Pan2, Saw, SinOsc, WhiteNoise


def _names(synthdef_):
    return [x.name for x in synthdef_.ugens]


# ---------------------------------------------------------------------------
# SCgf compilation tests
# ---------------------------------------------------------------------------


class TestCompilation:
    def test_scgf_header(self):
        """Compiled output starts with SCgf magic, version 2, synthdef count 1."""
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar())
        data = builder.build(name="test").compile()
        assert data[:4] == b"SCgf"
        assert struct.unpack(">I", data[4:8])[0] == 2
        assert struct.unpack(">H", data[8:10])[0] == 1

    def test_synthdef_name_encoded(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar())
        data = builder.build(name="my_synth").compile()
        name_len = data[10]
        assert data[11 : 11 + name_len].decode("ascii") == "my_synth"

    def test_anonymous_name_is_md5(self):
        """A SynthDef without a name gets an MD5 hash as anonymous_name."""
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar())
        synthdef_ = builder.build()
        assert len(synthdef_.anonymous_name) == 32
        assert synthdef_.name is None
        assert synthdef_.effective_name == synthdef_.anonymous_name

    def test_constants_collected(self):
        """Constants are collected once, in order of first use."""
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=880.0, phase=0.5))
        synthdef_ = builder.build(name="test")
        assert synthdef_.constants == (880.0, 0.5, 0.0)

    def test_ugen_count(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar())
        assert len(builder.build(name="test").ugens) == 2

    def test_compile_multiple_synthdefs(self):
        with SynthDefBuilder() as b1:
            Out.ar(bus=0, source=SinOsc.ar())
        with SynthDefBuilder() as b2:
            Out.ar(bus=0, source=SinOsc.ar(frequency=880.0))
        data = compile_synthdefs(b1.build(name="a"), b2.build(name="b"))
        assert struct.unpack(">H", data[8:10])[0] == 2

    def test_compile_deterministic(self):
        """Building and compiling the same graph twice yields identical bytes."""
        results = []
        for _ in range(2):
            with SynthDefBuilder(freq=440.0) as builder:
                Out.ar(bus=0, source=SinOsc.ar(frequency=builder["freq"]))
            results.append(builder.build(name="det").compile())
        assert results[0] == results[1]

    def test_decompile_round_trip(self):
        """Decompiled SynthDefs are equal to the originals and recompile identically."""
        with SynthDefBuilder(
            amp=0.25, freq=Parameter(name="freq", value=440.0, lag=0.5)
        ) as builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=builder["freq"]) * builder["amp"])
        original = builder.build(name="round")
        data = original.compile()
        (decompiled,) = decompile_synthdefs(data)
        assert compile_synthdefs(decompiled) == data
        assert decompiled == original
        assert decompiled.parameters["freq"][0].lag == 0.5
        assert decompiled.ugens[-1].flags == Out._flags

    def test_decompile_rejects_other_data(self):
        with pytest.raises(SerializationError):
            decompile_synthdefs(b"XXXX\x00\x00\x00\x02\x00\x01")

    def test_decompile_truncated(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar())
        data = builder.build(name="cut").compile()
        with pytest.raises(SerializationError):
            decompile_synthdefs(data[:-3])


# ---------------------------------------------------------------------------
# SynthDef structure tests
# ---------------------------------------------------------------------------


class TestSynthDef:
    def test_empty_synthdef_rejected(self):
        with pytest.raises(SynthDefError):
            SynthDef([])

    def test_forward_reference_rejected(self):
        """A node may only read from nodes placed before it."""
        later = UGenNode(name="SinOsc", calculation_rate=CalculationRate.AUDIO)
        reader = UGenNode(
            name="LPF", calculation_rate=CalculationRate.AUDIO, inputs=[later[0], 440.0]
        )
        with pytest.raises(SynthDefError):
            SynthDef([reader, later])
        assert SynthDef([later, reader]).ugen_index(reader) == 1

    def test_structural_equality(self):
        synthdefs = []
        for _ in range(2):
            with SynthDefBuilder() as builder:
                Out.ar(bus=0, source=SinOsc.ar())
            synthdefs.append(builder.build(name="same"))
        assert synthdefs[0] == synthdefs[1]
        assert hash(synthdefs[0]) == hash(synthdefs[1])
        assert synthdefs[0].ugens[0] is not synthdefs[1].ugens[0]


# ---------------------------------------------------------------------------
# Parameter tests
# ---------------------------------------------------------------------------


class TestParameters:
    def test_controls_come_first(self):
        """Control nodes precede every other node, parameters sorted by name."""
        with SynthDefBuilder(frequency=440.0, amplitude=0.5) as builder:
            sig = SinOsc.ar(frequency=builder["frequency"])
            Out.ar(bus=0, source=sig * builder["amplitude"])
        synthdef_ = builder.build(name="test")
        assert _names(synthdef_) == ["Control", "SinOsc", "BinaryOpUGen", "Out"]
        assert len(synthdef_.ugens[0]) == 2
        assert list(synthdef_.parameters) == ["amplitude", "frequency"]
        assert synthdef_.parameters["frequency"][1] == 1
        assert synthdef_.ugens[1].inputs[0] == synthdef_.ugens[0][1]

    def test_multi_value_parameter_expands(self):
        with SynthDefBuilder(freqs=[440.0, 660.0]) as builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=builder["freqs"]))
        synthdef_ = builder.build()
        control_node = synthdef_.ugens[0]
        assert len(control_node) == 2
        assert _names(synthdef_) == ["Control", "SinOsc", "SinOsc", "Out"]
        assert synthdef_.ugens[2].inputs[0] == control_node[1]

    def test_lagged_parameter_uses_lag_control(self):
        with SynthDefBuilder(
            amp=0.1, freq=Parameter(name="freq", value=440.0, lag=0.5)
        ) as builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=builder["freq"]) * builder["amp"])
        lag_control = builder.build().ugens[0]
        assert lag_control.name == "LagControl"
        assert lag_control.inputs == (0.0, 0.5)

    def test_parameter_rates_grouped(self):
        """Each parameter rate gets its own control node, in a fixed order."""
        builder = SynthDefBuilder(freq=440.0)
        builder.add_parameter(name="gate", value=1.0, rate="tr")
        builder.add_parameter(name="in_sig", value=0.0, rate="ar")
        builder.add_parameter(name="i_time", value=2.0, rate=ParameterRate.SCALAR)
        with builder:
            Out.ar(bus=0, source=SinOsc.ar(frequency=builder["freq"]))
        synthdef_ = builder.build()
        controls = synthdef_.ugens[:4]
        assert [(x.name, x.calculation_rate) for x in controls] == [
            ("Control", CalculationRate.SCALAR),
            ("TrigControl", CalculationRate.CONTROL),
            ("AudioControl", CalculationRate.AUDIO),
            ("Control", CalculationRate.CONTROL),
        ]
        assert [x.special_index for x in controls] == [0, 1, 2, 3]
        assert synthdef_.controls == controls

    def test_duplicate_parameter_rejected(self):
        builder = SynthDefBuilder(freq=440.0)
        with pytest.raises(ValueError):
            builder.add_parameter(name="freq", value=220.0)

    def test_inline_control(self):
        with SynthDefBuilder() as builder:
            freq = control("freq", 220.0)
            Out.ar(bus=0, source=SinOsc.ar(frequency=freq))
        assert builder["freq"] is freq
        assert "freq" in builder.build().parameters

    def test_inline_control_conflict(self):
        with SynthDefBuilder():
            control("freq", 220.0)
            with pytest.raises(ValueError):
                control("freq", 330.0)

    def test_parameter_requires_value(self):
        with pytest.raises(ValueError):
            Parameter(name="empty", value=[])

    def test_synthdef_decorator(self):
        """Positional decorator arguments set parameter rates and lags."""

        @synthdef("ar", ("kr", 0.5))
        def sine(freq=440.0, amp=0.1):
            Out.ar(bus=0, source=SinOsc.ar(frequency=freq) * amp)

        assert sine.name == "sine"
        assert _names(sine) == [
            "AudioControl",
            "LagControl",
            "SinOsc",
            "BinaryOpUGen",
            "Out",
        ]
        assert sine.parameters["amp"][0].lag == 0.5
        assert sine.parameters["freq"][0].rate == ParameterRate.AUDIO


# ---------------------------------------------------------------------------
# Operator tests
# ---------------------------------------------------------------------------


class TestOperators:
    def test_binary_operator_ugen(self):
        sig = SinOsc.ar() * SinOsc.kr()
        assert isinstance(sig, BinaryOpUGen)
        assert sig.operator == BinaryOperator.MULTIPLICATION
        assert sig.declared_rate is None
        assert sig.calculation_rate == CalculationRate.AUDIO

    def test_constant_folding(self):
        result = Constant(220.0) * 2
        assert isinstance(result, Constant)
        assert result == 440.0
        assert -Constant(3.0) == -3.0
        assert abs(Constant(-2.0)) == 2.0

    def test_multiply_by_one_adds_nothing(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar() * 1)
        assert _names(builder.build()) == ["SinOsc", "Out"]

    def test_add_zero_adds_nothing(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=0 + SinOsc.ar() + 0)
        assert _names(builder.build()) == ["SinOsc", "Out"]

    def test_multiply_by_zero_is_constant(self):
        """The product folds to 0, which Out then lifts to audio rate."""
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar() * 0)
        synthdef_ = builder.build()
        assert _names(synthdef_) == ["SinOsc", "DC", "Out"]
        assert synthdef_.ugens[1].inputs == (0.0,)

    def test_negation_forms_share_a_node(self):
        """``-x``, ``0 - x`` and ``x * -1`` all become one negation node."""
        with SynthDefBuilder() as builder:
            sig = SinOsc.ar()
            Out.ar(bus=0, source=[-sig, 0 - sig, sig * -1])
        synthdef_ = builder.build()
        assert _names(synthdef_) == ["SinOsc", "UnaryOpUGen", "Out"]
        negation = synthdef_.ugens[1]
        assert negation.special_index == UnaryOperator.NEGATIVE
        assert negation.calculation_rate == CalculationRate.AUDIO
        assert synthdef_.ugens[2].inputs[1:] == (negation[0],) * 3

    def test_unary_methods(self):
        sig = SinOsc.kr()
        assert isinstance(sig.midicps(), UnaryOpUGen)
        assert sig.squared().operator == UnaryOperator.SQUARED
        assert Constant(69).midicps() == 440.0

    def test_multichannel_operand(self):
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=SinOsc.ar() * [0.5, 0.25])
        synthdef_ = builder.build()
        assert _names(synthdef_) == ["SinOsc", "BinaryOpUGen", "BinaryOpUGen", "Out"]


# ---------------------------------------------------------------------------
# Graph element tests
# ---------------------------------------------------------------------------


class TestGraphElements:
    def test_structural_equality(self):
        assert SinOsc.ar(frequency=440) == SinOsc.ar(frequency=440)
        assert hash(SinOsc.ar(frequency=440)) == hash(SinOsc.ar(frequency=440))
        assert SinOsc.ar() != SinOsc.kr()
        assert SinOsc.ar() != Saw.ar()

    def test_channel_counts(self):
        assert len(SinOsc.ar()) == 1
        assert len(SinOsc.ar(frequency=[1, 2, 3])) == 3
        assert len(Pan2.ar(source=SinOsc.ar())) == 2
        assert len(Out.ar(bus=0, source=SinOsc.ar())) == 0
        assert len(GESeq(1, 2)) == 2

    def test_single_channel_selects_itself(self):
        sig = SinOsc.ar()
        assert sig[0] is sig
        assert sig[-1] is sig

    def test_channel_selection(self):
        pan = Pan2.ar(source=SinOsc.ar())
        assert pan[1] == ChannelProxy(pan, 1)
        assert pan[-1] == ChannelProxy(pan, 1)
        assert list(pan) == [ChannelProxy(pan, 0), ChannelProxy(pan, 1)]
        assert pan.left == pan[0]

    def test_channel_index_out_of_range(self):
        pan = Pan2.ar(source=SinOsc.ar())
        with pytest.raises(ChannelIndexError):
            pan[2]
        with pytest.raises(IndexError):
            SinOsc.ar()[1]

    def test_channel_index_error_at_build(self):
        """A hand-made selection past the outputs fails when the graph is built."""
        with SynthDefBuilder() as builder:
            Out.ar(bus=0, source=ChannelProxy(SinOsc.ar(), 3))
        with pytest.raises(ChannelIndexError):
            builder.build()

    def test_strings_are_not_signals(self):
        with pytest.raises(ValueError):
            SinOsc.ar(frequency="440")

    def test_invalid_rate_rejected(self):
        with pytest.raises(ValueError):
            A2K(calculation_rate="ar", source=0)

    def test_missing_input_rejected(self):
        with pytest.raises(TypeError):
            LPF.ar()

    def test_flags_declared_on_type(self):
        assert Out.ar(bus=0, source=0).flags == (
            UGenFlag.SIDE_EFFECT | UGenFlag.INDIVIDUAL
        )
        assert WhiteNoise.ar().is_individual
        assert UGenFlag.PURE in SinOsc.ar().flags
