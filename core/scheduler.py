"""
Lookahead scheduler.

Every render quantum the engine calls `fill(frame, frames)`. The scheduler
dispatches every note occurrence whose musical time falls inside
[horizon, now + quantum + lookahead) and then moves the horizon to the end
of that window. Windows are half-open and contiguous, so each occurrence is
dispatched exactly once; its onset is stamped with the exact frame, so the
early dispatch is inaudible.

Occurrences are counted in elapsed beats (beats since the last stop, never
wrapping). Note k of a track plays at `offset + n * loop_beats` for n >= 0,
which makes loop wraps seamless: the next iteration is already queued
before the boundary is crossed.
"""
from __future__ import annotations

import logging
import math
from typing import Sequence, Tuple

from core.clock import Clock
from core.track import Track

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(self, clock: Clock, *, lookahead_s: float = 0.1) -> None:
        self.clock = clock
        self.lookahead_s = float(lookahead_s)
        self.dispatched = 0
        self._tracks: Tuple[Track, ...] = ()
        self._horizon = 0.0

    @property
    def horizon(self) -> float:
        return self._horizon

    def attach(self, tracks: Sequence[Track]) -> None:
        self._tracks = tuple(tracks)
        self.reset()

    def detach(self) -> None:
        self._tracks = ()
        self.reset()

    def reset(self) -> None:
        """Back to beat 0 (stop / new composition)."""
        self._horizon = 0.0

    def rewind(self, elapsed: float) -> None:
        """Forget everything queued past `elapsed` (pause)."""
        self._horizon = min(self._horizon, float(elapsed))

    def fill(self, frame: int, frames: int) -> int:
        """Dispatch the occurrences due before the end of this window; returns how many."""
        clock = self.clock
        if not clock.is_playing or not self._tracks:
            return 0

        loop = clock.loop_beats
        if loop <= 0:
            return 0

        now = clock.elapsed
        window_s = frames / clock.sample_rate + self.lookahead_s
        target = now + clock.beats_in(window_s)
        start = self._horizon
        if target <= start:
            return 0

        bpm = clock.bpm
        sr = clock.sample_rate
        count = 0
        for track in self._tracks:
            for note in track.notes:
                n = max(0, math.floor((start - note.offset) / loop))
                u = note.offset + n * loop
                while u < start:
                    n += 1
                    u = note.offset + n * loop
                while u < target:
                    at = frame + int(round(clock.seconds_for(u - now) * sr))
                    if track.dispatch(note, at, bpm):
                        count += 1
                    n += 1
                    u = note.offset + n * loop

        self._horizon = target
        self.dispatched += count
        return count
