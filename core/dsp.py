"""
Small DSP building blocks shared by voices, tracks and the master bus.

Everything here works on numpy blocks; the engine renders in fixed
128-frame quanta so feedback structures can be vectorized per block as long
as their delay is at least one quantum long.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

RENDER_QUANTUM = 128

FloatArray = NDArray[np.float64]


# ---------------------------
# Levels
# ---------------------------
def db_to_gain(db: float) -> float:
    if db == -math.inf:
        return 0.0
    return float(10.0 ** (db / 20.0))


def equal_power_pan(pan: FloatArray) -> tuple[FloatArray, FloatArray]:
    """pan in [-1, 1] -> (left, right) gains, constant power."""
    theta = (np.clip(pan, -1.0, 1.0) + 1.0) * (np.pi / 4.0)
    return np.cos(theta), np.sin(theta)


# ---------------------------
# Oscillators (phase in cycles)
# ---------------------------
def osc_sine(phase: FloatArray) -> FloatArray:
    return np.sin(2 * np.pi * phase)


def osc_square(phase: FloatArray) -> FloatArray:
    return np.where(phase % 1.0 < 0.5, 1.0, -1.0)


def osc_saw(phase: FloatArray) -> FloatArray:
    return 2.0 * (phase % 1.0) - 1.0


def osc_triangle(phase: FloatArray) -> FloatArray:
    return 2.0 * np.abs(2.0 * (phase % 1.0) - 1.0) - 1.0


def phase_of(freq_hz: float, n: int, sr: int) -> FloatArray:
    return freq_hz * np.arange(n, dtype=np.float64) / sr


def phase_from_curve(freq_curve: FloatArray, sr: int) -> FloatArray:
    """Integrate an instantaneous-frequency curve into phase (cycles)."""
    return (np.cumsum(freq_curve) - freq_curve) / sr


# ---------------------------
# Envelope
# ---------------------------
@dataclass(frozen=True)
class ADSR:
    """Attack-Decay-Sustain-Release; release starts when the note is let go."""

    attack: float = 0.01
    decay: float = 0.1
    sustain: float = 0.7
    release: float = 0.3

    def render(self, hold_s: float, sr: int) -> FloatArray:
        """Envelope for a note held `hold_s` seconds, including its release tail."""
        hold = max(1, int(round(hold_s * sr)))
        a = max(1, int(self.attack * sr))
        d = max(1, int(self.decay * sr))
        r = max(1, int(self.release * sr))

        t = np.arange(hold, dtype=np.float64)
        env = np.where(
            t < a,
            t / a,
            np.where(
                t < a + d,
                1.0 - (1.0 - self.sustain) * (t - a) / d,
                self.sustain,
            ),
        )
        # Release from wherever the held part ended
        start = float(env[-1])
        tail = start * (1.0 - np.arange(1, r + 1, dtype=np.float64) / r)
        return np.concatenate((env, tail))


# ---------------------------
# Smoothed parameter
# ---------------------------
class Param:
    """
    A per-sample control value with linear ramps.
    `render(frames)` returns the values for the next block and advances.
    """

    def __init__(self, value: float, sample_rate: int) -> None:
        self.sample_rate = int(sample_rate)
        self._value = float(value)
        self._target = float(value)
        self._step = 0.0
        self._remaining = 0

    @property
    def value(self) -> float:
        return self._value

    @property
    def target(self) -> float:
        return self._target

    def set(self, value: float) -> None:
        self._value = self._target = float(value)
        self._step = 0.0
        self._remaining = 0

    def ramp_to(self, value: float, seconds: float) -> None:
        n = int(round(seconds * self.sample_rate))
        if n <= 0:
            self.set(value)
            return
        self._target = float(value)
        self._remaining = n
        self._step = (self._target - self._value) / n

    def render(self, frames: int) -> FloatArray:
        if self._remaining <= 0:
            return np.full(frames, self._value)

        k = min(frames, self._remaining)
        out = np.empty(frames)
        out[:k] = self._value + self._step * np.arange(1, k + 1)
        self._remaining -= k
        if self._remaining == 0:
            self._value = self._target
            out[k:] = self._target
        else:
            self._value = float(out[k - 1])
        return out


# ---------------------------
# Delay line
# ---------------------------
class DelayLine:
    """
    Ring buffer. `read(delay, n)` must be called with n <= delay so a block
    never depends on samples written in the same block.
    """

    def __init__(self, max_delay: int, channels: Optional[int] = None) -> None:
        size = int(max_delay) + RENDER_QUANTUM
        shape = (size,) if channels is None else (size, channels)
        self._buf = np.zeros(shape)
        self._pos = 0

    @property
    def capacity(self) -> int:
        return self._buf.shape[0] - RENDER_QUANTUM

    def read(self, delay: int, frames: int) -> FloatArray:
        if frames > delay:
            raise ValueError(f"block of {frames} frames exceeds delay {delay}")
        delay = min(int(delay), self.capacity)
        idx = (self._pos - delay + np.arange(frames)) % self._buf.shape[0]
        return self._buf[idx]

    def write(self, block: FloatArray) -> None:
        idx = (self._pos + np.arange(block.shape[0])) % self._buf.shape[0]
        self._buf[idx] = block
        self._pos = int((self._pos + block.shape[0]) % self._buf.shape[0])

    def clear(self) -> None:
        self._buf[:] = 0.0
