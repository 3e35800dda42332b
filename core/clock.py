"""
Transport clock.

Musical time lives here: tempo (with linear ramps), play/pause/stop state,
the fixed loop region and the current position. The clock never looks at
the wall clock; it only moves when the engine renders audio (`advance`).

Two positions are tracked:
- `elapsed`: beats played since the last stop (never wraps); the scheduler
  keys note repetitions off this value
- `position`: what a user sees; wraps into the loop region while looping
"""
from __future__ import annotations

import logging
import math
from enum import Enum

logger = logging.getLogger(__name__)

TEMPO_RAMP_SECONDS = 1.0
_EPS = 1e-9


class TransportState(str, Enum):
    stopped = "stopped"
    playing = "playing"
    paused = "paused"


class Clock:
    def __init__(
        self,
        sample_rate: int,
        *,
        bpm: float = 120.0,
        beats_per_bar: float = 4.0,
        loop_bars: int = 4,
    ) -> None:
        self.sample_rate = int(sample_rate)
        self.state = TransportState.stopped
        self.loop_enabled = False

        self._beats_per_bar = float(beats_per_bar)
        self._loop_bars = int(loop_bars)
        self._elapsed = 0.0
        self._position = 0.0

        self._bpm = float(bpm)
        self._ramp_target = float(bpm)
        self._ramp_remaining = 0.0

    # ----------------------------
    # Read
    # ----------------------------
    @property
    def bpm(self) -> float:
        return self._bpm

    @property
    def target_bpm(self) -> float:
        return self._ramp_target if self._ramp_remaining > 0 else self._bpm

    @property
    def is_playing(self) -> bool:
        return self.state == TransportState.playing

    @property
    def beats_per_bar(self) -> float:
        return self._beats_per_bar

    @property
    def loop_bars(self) -> int:
        return self._loop_bars

    @property
    def loop_beats(self) -> float:
        return self._loop_bars * self._beats_per_bar

    @property
    def elapsed(self) -> float:
        return self._elapsed

    @property
    def position(self) -> float:
        return self._position

    def position_bbs(self) -> str:
        """Position as "bars:quarters:sixteenths" (sixteenths may be fractional)."""
        bars = int(self._position // self._beats_per_bar)
        rem = self._position - bars * self._beats_per_bar
        quarters = int(rem)
        sixteenths = round((rem - quarters) * 4.0, 3)
        return f"{bars}:{quarters}:{sixteenths:g}"

    def beats_in(self, seconds: float) -> float:
        """Beats covered in the next `seconds`, honoring an active tempo ramp."""
        if seconds <= 0:
            return 0.0
        if self._ramp_remaining <= 0:
            return self._bpm * seconds / 60.0

        r = self._ramp_remaining
        s1 = min(seconds, r)
        slope = (self._ramp_target - self._bpm) / r
        beats = (self._bpm * s1 + slope * s1 * s1 / 2.0) / 60.0
        if seconds > r:
            beats += self._ramp_target * (seconds - r) / 60.0
        return beats

    def seconds_for(self, beats: float) -> float:
        """Inverse of beats_in: seconds until `beats` more beats have played."""
        if beats <= 0:
            return 0.0
        if self._ramp_remaining <= 0:
            return 60.0 * beats / self._bpm

        r = self._ramp_remaining
        ramp_beats = self.beats_in(r)
        if beats > ramp_beats:
            return r + 60.0 * (beats - ramp_beats) / self._ramp_target

        a = (self._ramp_target - self._bpm) / (2.0 * r)
        b = self._bpm
        c = 60.0 * beats
        if abs(a) < _EPS:
            return c / b
        disc = max(b * b + 4.0 * a * c, 0.0)
        return (-b + math.sqrt(disc)) / (2.0 * a)

    # ----------------------------
    # Mutations
    # ----------------------------
    def configure(self, tempo_bpm: float, *, beats_per_bar: float = 4.0, loop_bars: int | None = None) -> None:
        """New composition: hard tempo (no ramp), meter, loop length. Resets to bar 0."""
        self.stop()
        self._bpm = self._ramp_target = float(tempo_bpm)
        self._ramp_remaining = 0.0
        self._beats_per_bar = float(beats_per_bar)
        if loop_bars is not None:
            self._loop_bars = int(loop_bars)

    def play(self) -> bool:
        if self.state == TransportState.playing:
            return False
        self.state = TransportState.playing
        return True

    def pause(self) -> bool:
        """Only meaningful while playing; otherwise a no-op."""
        if self.state != TransportState.playing:
            return False
        self.state = TransportState.paused
        return True

    def stop(self) -> None:
        """Valid from any state; always rewinds to bar 0."""
        self.state = TransportState.stopped
        self._elapsed = 0.0
        self._position = 0.0

    def set_tempo(self, bpm: float, ramp_s: float = TEMPO_RAMP_SECONDS) -> None:
        """Ramp to `bpm`; position is untouched."""
        if ramp_s <= 0:
            self._bpm = self._ramp_target = float(bpm)
            self._ramp_remaining = 0.0
            return
        self._ramp_target = float(bpm)
        self._ramp_remaining = float(ramp_s)

    def set_loop(self, enabled: bool) -> None:
        self.loop_enabled = bool(enabled)
        if self.loop_enabled:
            self._wrap()

    def advance(self, frames: int) -> None:
        """Move audio time forward; tempo ramps progress even while stopped."""
        dt = frames / self.sample_rate

        if self.state == TransportState.playing:
            d = self.beats_in(dt)
            self._elapsed += d
            self._position += d
            if self.loop_enabled:
                self._wrap()

        if self._ramp_remaining > 0:
            s1 = min(dt, self._ramp_remaining)
            self._bpm += (self._ramp_target - self._bpm) * s1 / self._ramp_remaining
            self._ramp_remaining -= s1
            if self._ramp_remaining <= _EPS:
                self._bpm = self._ramp_target
                self._ramp_remaining = 0.0

    def _wrap(self) -> None:
        loop = self.loop_beats
        if loop > 0 and self._position >= loop:
            self._position = math.fmod(self._position, loop)
