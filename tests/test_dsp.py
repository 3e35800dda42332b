from __future__ import annotations

import math

import numpy as np
import pytest

from core.dsp import ADSR, RENDER_QUANTUM, DelayLine, Param, db_to_gain, equal_power_pan, phase_from_curve


def test_db_to_gain():
    assert db_to_gain(0) == pytest.approx(1.0)
    assert db_to_gain(-20) == pytest.approx(0.1)
    assert db_to_gain(-60) == pytest.approx(0.001)
    assert db_to_gain(-math.inf) == 0.0


def test_equal_power_pan_is_constant_power():
    pans = np.linspace(-1.0, 1.0, 21)
    left, right = equal_power_pan(pans)
    np.testing.assert_allclose(left**2 + right**2, 1.0)
    assert left[0] == pytest.approx(1.0)
    assert right[-1] == pytest.approx(1.0)
    assert left[10] == pytest.approx(right[10])


def test_param_ramps_linearly_then_holds():
    p = Param(0.0, sample_rate=100)
    p.ramp_to(1.0, 0.1)  # 10 samples
    first = p.render(5)
    np.testing.assert_allclose(first, [0.1, 0.2, 0.3, 0.4, 0.5])
    rest = p.render(8)
    np.testing.assert_allclose(rest, [0.6, 0.7, 0.8, 0.9, 1.0, 1.0, 1.0, 1.0])
    assert p.value == 1.0
    assert p.target == 1.0


def test_param_zero_length_ramp_jumps():
    p = Param(0.5, sample_rate=100)
    p.ramp_to(0.0, 0.0)
    assert p.value == 0.0
    np.testing.assert_array_equal(p.render(4), np.zeros(4))


def test_adsr_length_includes_release():
    env = ADSR(attack=0.1, decay=0.1, sustain=0.5, release=0.3).render(0.5, sr=100)
    assert env.shape == (50 + 30,)
    assert env.max() <= 1.0
    assert env[-1] == pytest.approx(0.0)
    # sustain level reached before release
    assert env[49] == pytest.approx(0.5)


def test_delay_line_returns_past_block():
    line = DelayLine(RENDER_QUANTUM)
    block = np.arange(RENDER_QUANTUM, dtype=np.float64)
    np.testing.assert_array_equal(line.read(RENDER_QUANTUM, RENDER_QUANTUM), np.zeros(RENDER_QUANTUM))
    line.write(block)
    np.testing.assert_array_equal(line.read(RENDER_QUANTUM, RENDER_QUANTUM), block)


def test_delay_line_rejects_blocks_longer_than_delay():
    line = DelayLine(256)
    with pytest.raises(ValueError):
        line.read(64, 128)


def test_phase_from_curve_matches_constant_frequency():
    sr = 1000
    curve = np.full(10, 100.0)
    np.testing.assert_allclose(phase_from_curve(curve, sr), np.arange(10) * 0.1)
