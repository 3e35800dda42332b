from __future__ import annotations

import numpy as np
import pytest

from core.analyser import Analyser, normalize_db


def test_normalize_db_edges():
    values = np.array([-np.inf, -140.0, -100.0, -50.0, 0.0, 10.0, np.nan])
    assert normalize_db(values).tolist() == [0, 0, 0, 127, 255, 255, 0]


@pytest.mark.parametrize("db", np.linspace(-100.0, 0.0, 11))
def test_normalize_db_formula(db):
    expected = int(np.floor((db + 100.0) / 100.0 * 255.0))
    assert normalize_db(np.array([db]))[0] == expected


def test_snapshot_is_one_byte_per_bin():
    a = Analyser(bins=256)
    snap = a.snapshot()
    assert isinstance(snap, bytes)
    assert len(snap) == 256


def test_silence_reads_all_zero():
    a = Analyser(bins=64)
    a.push(np.zeros((128, 2)))
    assert set(a.snapshot()) == {0}


def test_sine_peaks_in_its_bin():
    a = Analyser(bins=256, smoothing=0.0)
    n = np.arange(a.fft_size)
    tone = np.sin(2 * np.pi * 32 * n / a.fft_size)
    a.push(np.stack((tone, tone), axis=1))
    levels = np.frombuffer(a.snapshot(), dtype=np.uint8)
    assert int(np.argmax(levels)) == 32
    assert levels[32] > 200


def test_push_wraps_ring_buffer():
    a = Analyser(bins=4)
    a.push(np.arange(6, dtype=np.float64))
    a.push(np.arange(6, 10, dtype=np.float64))
    np.testing.assert_array_equal(np.roll(a._ring, -a._pos), np.arange(2, 10))


def test_smoothing_carries_previous_frames():
    a = Analyser(bins=64, smoothing=0.5)
    n = np.arange(a.fft_size)
    a.push(np.sin(2 * np.pi * 8 * n / a.fft_size))
    loud = a.get_value()[8]
    a.push(np.zeros(a.fft_size))
    # half of the previous magnitude survives: -6 dB
    assert a.get_value()[8] == pytest.approx(loud - 20 * np.log10(2), abs=1e-6)


def test_reset_clears_history():
    a = Analyser(bins=64)
    a.push(np.ones(200))
    a.reset()
    assert set(a.snapshot()) == {0}
