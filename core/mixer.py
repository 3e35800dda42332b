"""
Master bus: track sum -> (dry + reverb send + echo send) -> master gain.

The topology is fixed. Both sends are always present at a constant wet
level; the master output is the single tap for the analyser and recorder.
Feedback structures run block-wise, so every delay is at least one render
quantum long.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np
from scipy.signal import lfilter

from core.composition_models import MIN_TEMPO
from core.dsp import RENDER_QUANTUM, DelayLine, FloatArray, Param, db_to_gain
from core.timing import parse_duration

logger = logging.getLogger(__name__)

# Freeverb tunings at 44.1 kHz
_COMB_TUNING = (1116, 1188, 1277, 1356, 1422, 1491, 1557, 1617)
_ALLPASS_TUNING = (556, 441, 341, 225)
_STEREO_SPREAD = 23
_ALLPASS_FEEDBACK = 0.5
_DAMPING = 0.2
_REVERB_INPUT_GAIN = 0.015

MASTER_RAMP_SECONDS = 0.05
MAX_ECHO_SECONDS = 4.0


def _scaled(length: int, sample_rate: int) -> int:
    return max(int(round(length * sample_rate / 44100.0)), RENDER_QUANTUM)


class _Comb:
    """Feedback comb with a one-pole lowpass in the loop."""

    def __init__(self, delay: int, feedback: float, damping: float) -> None:
        self.delay = delay
        self.feedback = feedback
        self._line = DelayLine(delay)
        self._b = [1.0 - damping]
        self._a = [1.0, -damping]
        self._zi = np.zeros(1)

    def process(self, x: FloatArray) -> FloatArray:
        y = self._line.read(self.delay, x.shape[0])
        damped, self._zi = lfilter(self._b, self._a, y, zi=self._zi)
        self._line.write(x + damped * self.feedback)
        return y

    def clear(self) -> None:
        self._line.clear()
        self._zi[:] = 0.0


class _Allpass:
    def __init__(self, delay: int, feedback: float = _ALLPASS_FEEDBACK) -> None:
        self.delay = delay
        self.feedback = feedback
        self._line = DelayLine(delay)

    def process(self, x: FloatArray) -> FloatArray:
        buf = self._line.read(self.delay, x.shape[0])
        self._line.write(x + buf * self.feedback)
        return buf - x

    def clear(self) -> None:
        self._line.clear()


class Reverb:
    """Freeverb-style stereo reverb; comb feedback is derived from the decay time (T60)."""

    def __init__(self, sample_rate: int, decay_s: float = 2.0) -> None:
        self.sample_rate = int(sample_rate)
        self.decay_s = max(float(decay_s), 0.01)
        self._channels: List[Tuple[List[_Comb], List[_Allpass]]] = []
        for spread in (0, _STEREO_SPREAD):
            combs = []
            for length in _COMB_TUNING:
                d = _scaled(length + spread, self.sample_rate)
                g = 10.0 ** (-3.0 * d / (self.decay_s * self.sample_rate))
                combs.append(_Comb(d, g, _DAMPING))
            allpasses = [_Allpass(_scaled(length + spread, self.sample_rate)) for length in _ALLPASS_TUNING]
            self._channels.append((combs, allpasses))

    def process(self, block: FloatArray) -> FloatArray:
        mono = block.mean(axis=1) * _REVERB_INPUT_GAIN
        out = np.empty_like(block)
        for ch, (combs, allpasses) in enumerate(self._channels):
            acc = np.zeros(block.shape[0])
            for comb in combs:
                acc += comb.process(mono)
            for ap in allpasses:
                acc = ap.process(acc)
            out[:, ch] = acc
        return out

    def clear(self) -> None:
        for combs, allpasses in self._channels:
            for unit in (*combs, *allpasses):
                unit.clear()


class FeedbackDelay:
    """Tempo-synced echo; the delay length follows the transport tempo."""

    def __init__(self, sample_rate: int, time: str = "8n", feedback: float = 0.5) -> None:
        self.sample_rate = int(sample_rate)
        self.time = parse_duration(time)
        self.feedback = float(feedback)
        longest = self.time.to_seconds(MIN_TEMPO)
        if longest > MAX_ECHO_SECONDS:
            logger.warning("⚠️ Delay time %r exceeds %.1fs at %d bpm, capped", time, MAX_ECHO_SECONDS, MIN_TEMPO)
        self._max = int(min(longest, MAX_ECHO_SECONDS) * self.sample_rate) + RENDER_QUANTUM
        self._line = DelayLine(self._max, channels=2)

    def delay_frames(self, bpm: float) -> int:
        d = int(round(self.time.to_seconds(bpm) * self.sample_rate))
        return min(max(d, RENDER_QUANTUM), self._max)

    def process(self, block: FloatArray, bpm: float) -> FloatArray:
        y = self._line.read(self.delay_frames(bpm), block.shape[0])
        self._line.write(block + y * self.feedback)
        return y

    def clear(self) -> None:
        self._line.clear()


class MasterBus:
    def __init__(
        self,
        sample_rate: int,
        *,
        master_volume_db: float = -10.0,
        reverb_decay_s: float = 2.0,
        reverb_wet: float = 0.2,
        delay_time: str = "8n",
        delay_feedback: float = 0.5,
        delay_wet: float = 0.2,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.reverb = Reverb(sample_rate, reverb_decay_s)
        self.delay = FeedbackDelay(sample_rate, delay_time, delay_feedback)
        self.reverb_wet = float(reverb_wet)
        self.delay_wet = float(delay_wet)
        self._master_db = float(master_volume_db)
        self._master: Optional[Param] = Param(db_to_gain(self._master_db), sample_rate)

    @property
    def master_volume_db(self) -> float:
        return self._master_db

    def set_master_volume(self, db: float) -> None:
        self._master_db = float(db)
        if self._master is not None:
            self._master.ramp_to(db_to_gain(self._master_db), MASTER_RAMP_SECONDS)

    def process(self, dry: FloatArray, bpm: float) -> FloatArray:
        """Stereo track sum in, stereo master out (same shape)."""
        if self._master is None:
            return np.zeros_like(dry)
        wet_r = self.reverb.process(dry)
        wet_d = self.delay.process(dry, bpm)
        mixed = dry + self.reverb_wet * wet_r + self.delay_wet * wet_d
        return mixed * self._master.render(dry.shape[0])[:, None]

    def clear(self) -> None:
        """Silence effect tails (stop)."""
        self.reverb.clear()
        self.delay.clear()

    def dispose(self) -> None:
        self.clear()
        self._master = None
