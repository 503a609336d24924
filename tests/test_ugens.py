"""Tests for the UGen catalog and the rate lattice."""

import pytest

from synthgraph import (
    BinaryOperator,
    CalculationRate,
    DoneAction,
    ParameterRate,
    SynthDefBuilder,
    UGenFlag,
    UnaryOperator,
)
from synthgraph.enums import max_rate
from synthgraph.ugens import (
    BPF,
    HPF,
    RLPF,
    Done,
    Drand,
    Dser,
    Dseries,
    Dust,
    Duty,
    FreeSelfWhenDone,
    Impulse,
    In,
    Latch,
    LFPulse,
    Line,
    LinLin,
    LocalIn,
    LocalOut,
    Mix,
    MulAdd,
    Out,
    Pan2,
    Poll,
    Saw,
    SinOsc,
    Sum3,
    Sum4,
    WhiteNoise,
    XLine,
)


def _compile(build_fn, name="test"):
    """Helper: run build_fn inside a SynthDefBuilder, build and compile the result."""
    with SynthDefBuilder() as builder:
        build_fn(builder)
    synthdef_ = builder.build(name=name)
    data = synthdef_.compile()
    assert data[:4] == b"SCgf"
    return synthdef_


def _names(synthdef_):
    return [x.name for x in synthdef_.ugens]


# ---------------------------------------------------------------------------
# Rate lattice
# ---------------------------------------------------------------------------


class TestCalculationRate:
    def test_from_expr(self):
        assert CalculationRate.from_expr("ar") == CalculationRate.AUDIO
        assert CalculationRate.from_expr("control") == CalculationRate.CONTROL
        assert CalculationRate.from_expr(3.5) == CalculationRate.SCALAR
        assert CalculationRate.from_expr(None) == CalculationRate.SCALAR
        assert CalculationRate.from_expr(SinOsc.kr()) == CalculationRate.CONTROL
        assert CalculationRate.from_expr(ParameterRate.TRIGGER) == CalculationRate.CONTROL
        assert (
            CalculationRate.from_expr([SinOsc.kr(), SinOsc.ar()])
            == CalculationRate.AUDIO
        )

    def test_coercion_order(self):
        scalar, control, audio, demand = (
            CalculationRate.SCALAR,
            CalculationRate.CONTROL,
            CalculationRate.AUDIO,
            CalculationRate.DEMAND,
        )
        assert scalar.can_coerce_to(audio)
        assert control.can_coerce_to(audio)
        assert not audio.can_coerce_to(control)
        assert not demand.can_coerce_to(audio)
        assert not scalar.can_coerce_to(demand)
        assert demand.can_coerce_to(demand)

    def test_tokens(self):
        assert [x.token for x in CalculationRate] == ["ir", "kr", "ar", "dr"]

    def test_max_rate(self):
        assert max_rate() == CalculationRate.SCALAR
        assert (
            max_rate(CalculationRate.CONTROL, CalculationRate.AUDIO)
            == CalculationRate.AUDIO
        )

    def test_parameter_rate_tokens(self):
        assert ParameterRate.from_expr("tr") == ParameterRate.TRIGGER
        assert ParameterRate.from_expr(None) == ParameterRate.CONTROL
        assert ParameterRate.from_expr("audio") == ParameterRate.AUDIO

    def test_operator_lookup(self):
        assert BinaryOperator.from_expr("power") == BinaryOperator.POWER
        assert int(DoneAction.FREE_SYNTH) == 2


# ---------------------------------------------------------------------------
# Oscillators, noise and filters
# ---------------------------------------------------------------------------


class TestSources:
    def test_oscillators(self):
        synthdef_ = _compile(
            lambda b: Out.ar(
                bus=0,
                source=[SinOsc.ar(), Saw.ar(), LFPulse.ar(width=0.25), Impulse.ar()],
            )
        )
        assert _names(synthdef_) == ["SinOsc", "Saw", "LFPulse", "Impulse", "Out"]
        assert synthdef_.ugens[2].inputs == (440.0, 0.0, 0.25)

    def test_noise_is_individual(self):
        assert WhiteNoise.ar().is_individual
        assert Dust.kr(density=2).is_individual
        assert not SinOsc.ar().is_individual

    def test_filters_match_source_rate(self):
        synthdef_ = _compile(
            lambda b: Out.ar(
                bus=0,
                source=[
                    BPF.ar(source=WhiteNoise.kr()),
                    HPF.ar(source=Saw.ar()),
                    RLPF.ar(source=Saw.ar(), reciprocal_of_q=0.2),
                ],
            )
        )
        assert _names(synthdef_) == ["WhiteNoise", "K2A", "BPF", "Saw", "HPF", "RLPF", "Out"]

    def test_lines_have_done_flags(self):
        assert Line.kr(duration=2, done_action=DoneAction.FREE_SYNTH).has_done_flag
        assert XLine.ar().has_done_flag

    def test_done_action_enum_as_input(self):
        synthdef_ = _compile(
            lambda b: Line.kr(done_action=DoneAction.FREE_SYNTH),
        )
        assert synthdef_.ugens[0].inputs == (0.0, 1.0, 1.0, 2.0)


# ---------------------------------------------------------------------------
# Bus I/O and panning
# ---------------------------------------------------------------------------


class TestBusIO:
    def test_in_channel_count(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=In.ar(bus=4, channel_count=2)))
        in_node = synthdef_.ugens[0]
        assert len(in_node) == 2
        assert in_node.inputs == (4.0,)
        assert len(synthdef_.ugens[1].inputs) == 3

    def test_local_in_cycles_defaults(self):
        synthdef_ = _compile(
            lambda b: LocalOut.ar(source=LocalIn.ar(channel_count=3, default=[1, 2]))
        )
        local_in, local_out = synthdef_.ugens
        assert local_in.inputs == (1.0, 2.0, 1.0)
        assert len(local_in) == 3
        assert len(local_out) == 0
        assert local_out.has_side_effect
        assert local_out.inputs == tuple(local_in.outputs)

    def test_local_in_default(self):
        synthdef_ = _compile(lambda b: LocalOut.kr(source=LocalIn.kr(channel_count=2)))
        assert synthdef_.ugens[0].inputs == (0.0, 0.0)

    def test_out_has_no_outputs(self):
        out = Out.ar(bus=0, source=SinOsc.ar())
        assert len(out) == 0
        assert out.has_side_effect
        assert out.is_individual

    def test_pan2(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=Pan2.ar(source=SinOsc.ar())))
        pan = synthdef_.ugens[1]
        assert pan.name == "Pan2"
        assert len(pan) == 2
        assert synthdef_.ugens[2].inputs == (0.0, pan[0], pan[1])


# ---------------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------------


class TestTriggers:
    def test_poll_label(self):
        synthdef_ = _compile(
            lambda b: Poll.kr(trigger=Impulse.kr(), source=SinOsc.kr(), label="hi")
        )
        poll = synthdef_.ugens[-1]
        assert poll.inputs[2:] == (-1.0, 2.0, 104.0, 105.0)
        assert poll.has_side_effect and poll.is_individual

    def test_poll_default_label(self):
        poll = Poll.ar(trigger=0, source=SinOsc.ar())
        assert len(poll.label) == len("SinOsc") + 1

    def test_latch_keeps_source_rate(self):
        synthdef_ = _compile(
            lambda b: Out.ar(
                bus=0, source=Latch.ar(source=WhiteNoise.ar(), trigger=Impulse.kr())
            )
        )
        assert _names(synthdef_) == ["WhiteNoise", "Impulse", "Latch", "Out"]

    def test_done(self):
        def build(b):
            line = Line.kr(duration=1)
            FreeSelfWhenDone.kr(source=line)
            Done.kr(source=line)

        synthdef_ = _compile(build)
        assert _names(synthdef_) == ["Line", "FreeSelfWhenDone", "Done"]
        assert synthdef_.ugens[1].has_side_effect


# ---------------------------------------------------------------------------
# Demand rate
# ---------------------------------------------------------------------------


class TestDemand:
    def test_duty_reads_demand_inputs(self):
        synthdef_ = _compile(
            lambda b: Out.kr(
                bus=0,
                source=Duty.kr(
                    duration=Dseries.dr(length=4),
                    level=Drand.dr(sequence=[1, 2, 3], repeats=float("inf")),
                ),
            )
        )
        assert _names(synthdef_) == ["Dseries", "Drand", "Duty", "Out"]
        assert synthdef_.ugens[2].has_done_flag

    def test_random_streams_are_individual(self):
        with SynthDefBuilder() as builder:
            Drand.dr(sequence=[1, 2])
            Drand.dr(sequence=[1, 2])
            Dser.dr(sequence=[1, 2])
            Dser.dr(sequence=[1, 2])
        assert _names(builder.build()) == ["Drand", "Drand", "Dser"]

    def test_demand_rate_only(self):
        with pytest.raises(AttributeError):
            Drand.ar(sequence=[1, 2])  # type: ignore[attr-defined]


# ---------------------------------------------------------------------------
# Mix
# ---------------------------------------------------------------------------


class TestMix:
    def test_mix_groups_by_four(self):
        synthdef_ = _compile(
            lambda b: Out.ar(
                bus=0, source=Mix.new([SinOsc.ar(frequency=f) for f in range(100, 600, 100)])
            )
        )
        assert _names(synthdef_) == ["SinOsc"] * 5 + ["Sum4", "BinaryOpUGen", "Out"]

    def test_mix_three(self):
        synthdef_ = _compile(
            lambda b: Out.ar(bus=0, source=Mix.new([SinOsc.ar(), Saw.ar(), Impulse.ar()]))
        )
        assert _names(synthdef_) == ["SinOsc", "Saw", "Impulse", "Sum3", "Out"]

    def test_zero_terms_dropped(self):
        synthdef_ = _compile(
            lambda b: Out.ar(bus=0, source=Mix.new([SinOsc.ar(), 0, Saw.ar()]))
        )
        assert _names(synthdef_) == ["SinOsc", "Saw", "BinaryOpUGen", "Out"]

    def test_sum_orders_by_rate(self):
        """Faster inputs are summed first."""
        with SynthDefBuilder() as builder:
            Sum3.new(input_one=SinOsc.kr(), input_two=1, input_three=SinOsc.ar())
        synthdef_ = builder.build()
        sum3 = synthdef_.ugens[-1]
        assert sum3.name == "Sum3"
        assert sum3.calculation_rate == CalculationRate.AUDIO
        assert sum3.inputs == (synthdef_.ugens[1][0], synthdef_.ugens[0][0], 1.0)

    def test_sum4_flags(self):
        assert UGenFlag.PURE in Sum4._flags

    def test_mix_empty(self):
        assert Mix.new([]) == 0.0

    def test_mix_multichannel(self):
        sources = [SinOsc.ar(frequency=f) for f in (100, 200, 300, 400)]
        mixed = Mix.multichannel(sources, 2)
        assert len(mixed) == 2
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=mixed))
        assert _names(synthdef_).count("BinaryOpUGen") == 2


# ---------------------------------------------------------------------------
# MulAdd
# ---------------------------------------------------------------------------


class TestMulAdd:
    def test_full_node(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd(0.5, 0.25)))
        assert _names(synthdef_) == ["SinOsc", "MulAdd", "Out"]
        mul_add = synthdef_.ugens[1]
        assert mul_add.calculation_rate == CalculationRate.AUDIO
        assert mul_add.inputs == (synthdef_.ugens[0][0], 0.5, 0.25)
        assert UGenFlag.PURE in mul_add.flags

    def test_zero_multiplier_leaves_addend(self):
        synthdef_ = _compile(
            lambda b: Out.kr(
                bus=0, source=MulAdd.new(source=SinOsc.kr(), multiplier=0, addend=0.5)
            )
        )
        assert _names(synthdef_) == ["SinOsc", "Out"]
        assert synthdef_.ugens[1].inputs == (0.0, 0.5)

    def test_identity(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd()))
        assert _names(synthdef_) == ["SinOsc", "Out"]

    def test_multiplier_only(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd(0.5)))
        assert _names(synthdef_) == ["SinOsc", "BinaryOpUGen", "Out"]
        assert synthdef_.ugens[1].special_index == BinaryOperator.MULTIPLICATION

    def test_addend_only(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd(1, 0.5)))
        assert _names(synthdef_) == ["SinOsc", "BinaryOpUGen", "Out"]
        assert synthdef_.ugens[1].special_index == BinaryOperator.ADDITION

    def test_negation(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd(-1)))
        assert _names(synthdef_) == ["SinOsc", "UnaryOpUGen", "Out"]
        assert synthdef_.ugens[1].special_index == UnaryOperator.NEGATIVE

    def test_negation_with_addend_subtracts(self):
        synthdef_ = _compile(lambda b: Out.ar(bus=0, source=SinOsc.ar().madd(-1, 0.5)))
        subtraction = synthdef_.ugens[1]
        assert subtraction.special_index == BinaryOperator.SUBTRACTION
        assert subtraction.inputs == (0.5, synthdef_.ugens[0][0])

    def test_faster_multiplier_is_swapped_in(self):
        def build(b):
            Out.ar(
                bus=0,
                source=MulAdd.new(
                    source=SinOsc.kr(), multiplier=SinOsc.ar(frequency=2), addend=0.1
                ),
            )

        synthdef_ = _compile(build)
        assert _names(synthdef_) == ["SinOsc", "SinOsc", "MulAdd", "Out"]
        control, audio = synthdef_.ugens[0], synthdef_.ugens[1]
        assert synthdef_.ugens[2].inputs == (audio[0], control[0], 0.1)
        assert synthdef_.ugens[2].calculation_rate == CalculationRate.AUDIO

    def test_invalid_rates_fall_back_to_operators(self):
        def build(b):
            Out.ar(
                bus=0,
                source=MulAdd.new(
                    source=SinOsc.kr(),
                    multiplier=SinOsc.kr(frequency=2),
                    addend=SinOsc.ar(frequency=3),
                ),
            )

        names = _names(_compile(build))
        assert "MulAdd" not in names
        assert names.count("BinaryOpUGen") == 2

    def test_constants_fold(self):
        synthdef_ = _compile(
            lambda b: Out.kr(bus=0, source=MulAdd.new(source=2, multiplier=3, addend=1))
        )
        assert _names(synthdef_) == ["Out"]
        assert synthdef_.ugens[0].inputs == (0.0, 7.0)

    def test_multichannel_expands(self):
        synthdef_ = _compile(
            lambda b: Out.ar(bus=0, source=SinOsc.ar().madd([0.5, 0.25], 0.1))
        )
        assert _names(synthdef_) == ["SinOsc", "MulAdd", "MulAdd", "Out"]

    def test_linlin(self):
        synthdef_ = _compile(
            lambda b: Out.ar(
                bus=0,
                source=LinLin.ar(
                    source=SinOsc.ar(),
                    input_minimum=-1,
                    input_maximum=1,
                    output_minimum=100,
                    output_maximum=300,
                ),
            )
        )
        assert _names(synthdef_) == ["SinOsc", "MulAdd", "Out"]
        assert synthdef_.ugens[1].inputs == (synthdef_.ugens[0][0], 100.0, 200.0)
