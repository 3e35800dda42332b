from __future__ import annotations

import numpy as np
import pytest

from core.dsp import RENDER_QUANTUM
from core.mixer import FeedbackDelay, MasterBus, Reverb

SR = 8000


def test_delay_follows_tempo():
    d = FeedbackDelay(SR, "8n")
    assert d.delay_frames(120) == 2000  # eighth note @120 = 0.25 s
    assert d.delay_frames(60) == 4000


def test_delay_is_at_least_one_quantum():
    d = FeedbackDelay(SR, "128n")
    assert d.delay_frames(200) == RENDER_QUANTUM


def test_delay_echoes_an_impulse():
    d = FeedbackDelay(SR, "8n", feedback=0.5)
    block = np.zeros((RENDER_QUANTUM, 2))
    block[0] = 1.0
    out = [d.process(block, 120)]
    silent = np.zeros((RENDER_QUANTUM, 2))
    for _ in range(40):
        out.append(d.process(silent, 120))
    y = np.concatenate(out)
    assert y[2000, 0] == pytest.approx(1.0)
    assert y[4000, 0] == pytest.approx(0.5)
    assert not np.any(y[:2000])


def test_reverb_tail_is_finite_and_decays():
    r = Reverb(SR, decay_s=0.5)
    block = np.zeros((RENDER_QUANTUM, 2))
    block[0] = 1.0
    blocks = [r.process(block)]
    silent = np.zeros((RENDER_QUANTUM, 2))
    for _ in range(200):
        blocks.append(r.process(silent))
    y = np.concatenate(blocks)
    assert np.all(np.isfinite(y))
    assert np.any(y != 0.0)
    early = np.abs(y[:SR // 4]).max()
    late = np.abs(y[-RENDER_QUANTUM * 10:]).max()
    assert late < early


def test_reverb_clear_silences_tail():
    r = Reverb(SR)
    block = np.ones((RENDER_QUANTUM, 2))
    r.process(block)
    r.clear()
    assert not np.any(r.process(np.zeros((RENDER_QUANTUM, 2))))


def test_master_bus_silence_in_silence_out():
    bus = MasterBus(SR)
    for _ in range(10):
        out = bus.process(np.zeros((RENDER_QUANTUM, 2)), 120)
        assert out.shape == (RENDER_QUANTUM, 2)
        assert not np.any(out)


def test_master_bus_applies_master_gain():
    bus = MasterBus(SR, master_volume_db=-20.0, reverb_wet=0.0, delay_wet=0.0)
    dry = np.full((RENDER_QUANTUM, 2), 0.5)
    np.testing.assert_allclose(bus.process(dry, 120), 0.05)


def test_master_bus_dispose_mutes():
    bus = MasterBus(SR)
    bus.dispose()
    assert not np.any(bus.process(np.ones((RENDER_QUANTUM, 2)), 120))
