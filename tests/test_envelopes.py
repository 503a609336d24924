"""Tests for Envelope serialization and EnvGen expansion."""

import pytest

from synthgraph import CalculationRate, EnvelopeShape, SynthDefBuilder
from synthgraph.envelopes import EnvGen, Envelope
from synthgraph.ugens import Out, SinOsc


class TestEnvelopeSerialize:
    def test_percussive(self) -> None:
        assert Envelope.percussive().serialize() == [
            0.0, 2, -99, -99,
            1.0, 0.01, 5, -4.0,
            0.0, 1.0, 5, -4.0,
        ]  # fmt: skip

    def test_adsr_structure(self) -> None:
        values = Envelope.adsr().serialize()
        assert values[:4] == [0.0, 3, 2, -99]
        assert values[8] == 0.5  # sustain level

    def test_asr_release_node(self) -> None:
        assert Envelope.asr().release_node == 1

    def test_linen_segments(self) -> None:
        env = Envelope.linen(attack_time=0.1, sustain_time=2.0, release_time=0.5)
        assert env.durations == (0.1, 2.0, 0.5)
        assert env.amplitudes == (0.0, 1.0, 1.0, 0.0)

    def test_triangle_duration(self) -> None:
        assert Envelope.triangle(duration=2.0).durations == (1.0, 1.0)

    def test_default_curves_are_linear(self) -> None:
        values = Envelope().serialize()
        assert values[6:8] == [int(EnvelopeShape.LINEAR), 0.0]

    def test_named_curve(self) -> None:
        env = Envelope(amplitudes=[0.1, 1.0], durations=[1.0], curves="exponential")
        assert env.serialize()[6] == int(EnvelopeShape.EXPONENTIAL)

    def test_curves_cycle(self) -> None:
        env = Envelope(
            amplitudes=[0, 1, 0.5, 0], durations=[0.1, 0.2, 0.3], curves=[-4.0, 2.0]
        )
        assert env.curves == (-4.0, 2.0, -4.0)
        assert env.duration == pytest.approx(0.6)

    def test_loop_node(self) -> None:
        env = Envelope(amplitudes=[0, 1, 0], durations=[1, 1], loop_node=0)
        assert env.serialize()[3] == 0

    def test_too_few_amplitudes(self) -> None:
        with pytest.raises(ValueError):
            Envelope(amplitudes=[0], durations=[])

    def test_durations_must_match(self) -> None:
        with pytest.raises(ValueError):
            Envelope(amplitudes=[0, 1, 0], durations=[1])

    def test_equality(self) -> None:
        assert Envelope.adsr() == Envelope.adsr()
        assert hash(Envelope.adsr()) == hash(Envelope.adsr())
        assert Envelope.adsr() != Envelope.asr()


class TestEnvGen:
    def test_inputs(self) -> None:
        """EnvGen takes five scalar inputs followed by the flattened envelope."""
        with SynthDefBuilder() as builder:
            EnvGen.kr(envelope=Envelope.percussive(), done_action=2)
        (node,) = builder.build().ugens
        assert node.name == "EnvGen"
        assert node.calculation_rate == CalculationRate.CONTROL
        assert node.has_done_flag
        assert len(node.inputs) == 17
        assert node.inputs[:5] == (1.0, 1.0, 0.0, 1.0, 2.0)

    def test_signal_levels(self) -> None:
        with SynthDefBuilder(amp=0.5) as builder:
            env = EnvGen.kr(envelope=Envelope.percussive(amplitude=builder["amp"]))
            Out.ar(bus=0, source=SinOsc.ar() * env)
        synthdef_ = builder.build()
        control_node = synthdef_.ugens[0]
        env_gen = next(x for x in synthdef_.ugens if x.name == "EnvGen")
        assert env_gen.inputs[9] == control_node[0]

    def test_multichannel_level_expands(self) -> None:
        with SynthDefBuilder() as builder:
            env = EnvGen.ar(envelope=Envelope.percussive(amplitude=[0.5, 1.0]))
        assert len(env) == 2
        nodes = builder.build().ugens
        assert [x.name for x in nodes] == ["EnvGen", "EnvGen"]
        assert [x.inputs[9] for x in nodes] == [0.5, 1.0]
