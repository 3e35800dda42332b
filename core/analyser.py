"""
FFT analyser on the master tap.

Pull-based: the engine pushes every rendered master block into a ring
buffer; `snapshot()` computes the spectrum only when a caller asks for it.
Magnitude scaling, Blackman window and temporal smoothing follow the usual
Web Audio AnalyserNode conventions, so dB values land roughly in [-140, 0].
"""
from __future__ import annotations

from typing import Optional

import numpy as np

from core.dsp import FloatArray

DB_FLOOR = -100.0
DB_CEIL = 0.0


def normalize_db(values: FloatArray) -> np.ndarray:
    """
    dB magnitudes -> uint8 levels: clamp to [-100, 0] (-inf and NaN count as
    -100), then floor(((db + 100) / 100) * 255).
    """
    db = np.nan_to_num(np.asarray(values, dtype=np.float64), nan=DB_FLOOR, neginf=DB_FLOOR, posinf=DB_CEIL)
    db = np.clip(db, DB_FLOOR, DB_CEIL)
    return np.floor(((db + 100.0) / 100.0) * 255.0).astype(np.uint8)


class Analyser:
    def __init__(self, bins: int = 256, smoothing: float = 0.8) -> None:
        self.bins = int(bins)
        self.fft_size = 2 * self.bins
        self.smoothing = float(smoothing)
        self._ring = np.zeros(self.fft_size)
        self._pos = 0
        self._window = np.blackman(self.fft_size)
        self._smoothed: Optional[FloatArray] = None

    def push(self, block: FloatArray) -> None:
        """Accept a mono (n,) or stereo (n, 2) master block."""
        mono = block.mean(axis=1) if block.ndim == 2 else block
        n = mono.shape[0]
        if n >= self.fft_size:
            self._ring[:] = mono[-self.fft_size:]
            self._pos = 0
            return
        idx = (self._pos + np.arange(n)) % self.fft_size
        self._ring[idx] = mono
        self._pos = (self._pos + n) % self.fft_size

    def get_value(self) -> FloatArray:
        """Smoothed magnitude spectrum in dB, one value per bin."""
        frame = np.roll(self._ring, -self._pos) * self._window
        mag = np.abs(np.fft.rfft(frame))[: self.bins] / self.fft_size
        if self._smoothed is None:
            self._smoothed = mag
        else:
            self._smoothed = self.smoothing * self._smoothed + (1.0 - self.smoothing) * mag
        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(self._smoothed)

    def snapshot(self) -> bytes:
        return normalize_db(self.get_value()).tobytes()

    def reset(self) -> None:
        self._ring[:] = 0.0
        self._pos = 0
        self._smoothed = None
