"""
Runtime track: one voice + its note sequence + its mixer channel.

A Track is built on composition load and disposed before the next load.
It owns everything it uses (voice, gain/mute/pan stages, bound notes);
`dispose()` tears them down together and may be called any number of times.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.composition_models import (
    DEFAULT_TEMPO,
    MAX_VOLUME_DB,
    MIN_VOLUME_DB,
    NoteEvent,
    TrackSpec,
    _as_finite,
    clamp,
)
from core.dsp import FloatArray, Param, db_to_gain, equal_power_pan
from core.timing import COMMON_TIME, Duration, Meter, pitch_to_frequency
from core.voices import Voice, build_voice

logger = logging.getLogger(__name__)

GAIN_RAMP_SECONDS = 0.1
PAN_RAMP_SECONDS = 1.0
MUTE_RAMP_SECONDS = 0.01
PERCUSSION_DEFAULT_PITCH = "C2"


@dataclass(frozen=True)
class BoundNote:
    """A note resolved against the document meter: loop offset in beats, Hz, length."""

    index: int
    offset: float
    frequency: float
    duration: Duration
    velocity: float


@dataclass(frozen=True)
class MixerChannel:
    """Read-only view of a track's mixer state (targets, not ramp positions)."""

    gain_db: float
    muted: bool
    pan: float


def bind_notes(
    notes: Sequence[NoteEvent],
    *,
    percussive: bool,
    meter: Meter = COMMON_TIME,
    tempo: float = DEFAULT_TEMPO,
    loop_beats: float = 16.0,
    track_name: str = "",
) -> Tuple[BoundNote, ...]:
    """
    Pre-resolve note times to offsets inside the loop region.
    Negative offsets clamp to 0; offsets at or past the loop end are dropped.
    Order is kept as written.
    """
    out: List[BoundNote] = []
    last = 0.0
    unordered = False
    for i, note in enumerate(notes):
        offset = note.offset_beats(meter, bpm=tempo)
        if offset < 0:
            logger.warning("⚠️ Track %r: note #%d starts before 0, clamped", track_name, i)
            offset = 0.0
        if offset >= loop_beats:
            logger.warning("⚠️ Track %r: note #%d at beat %.3f is past the loop end, dropped", track_name, i, offset)
            continue

        freq = note.frequency()
        if freq is None:
            if not percussive:
                continue
            freq = pitch_to_frequency(PERCUSSION_DEFAULT_PITCH)

        if offset < last:
            unordered = True
        last = max(last, offset)
        out.append(
            BoundNote(
                index=i,
                offset=offset,
                frequency=freq,
                duration=note.length(meter),
                velocity=note.velocity,
            )
        )

    if unordered:
        logger.warning("⚠️ Track %r: note times are not in order", track_name)
    return tuple(out)


class Track:
    def __init__(
        self,
        index: int,
        voice: Voice,
        *,
        name: str = "",
        gain_db: float = -5.0,
        pan: float = 0.0,
        sample_rate: int = 44100,
    ) -> None:
        self.index = int(index)
        self.name = name or f"Track {index + 1}"
        self.sample_rate = int(sample_rate)
        self.voice: Optional[Voice] = voice
        self.notes: Tuple[BoundNote, ...] = ()
        self.triggered = 0

        self._gain_db = clamp(gain_db, MIN_VOLUME_DB, MAX_VOLUME_DB)
        self._muted = False
        self._pan = clamp(pan, -1.0, 1.0)
        self._gain: Optional[Param] = Param(db_to_gain(self._gain_db), sample_rate)
        self._mute: Optional[Param] = Param(1.0, sample_rate)
        self._panner: Optional[Param] = Param(self._pan, sample_rate)
        self._disposed = False

    @classmethod
    def from_spec(
        cls,
        index: int,
        spec: TrackSpec,
        *,
        meter: Meter = COMMON_TIME,
        tempo: float = DEFAULT_TEMPO,
        loop_beats: float = 16.0,
        sample_rate: int = 44100,
    ) -> "Track":
        voice = build_voice(spec.instrument, sample_rate=sample_rate)
        track = cls(index, voice, name=spec.name, gain_db=spec.volume_db, pan=spec.pan, sample_rate=sample_rate)
        track.bind(spec.notes, meter=meter, tempo=tempo, loop_beats=loop_beats)
        return track

    def __enter__(self) -> "Track":
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        kind = self.voice.kind.value if self.voice is not None else "disposed"
        return f"Track({self.index}, {self.name!r}, {kind}, notes={len(self.notes)})"

    # ----------------------------
    # Read
    # ----------------------------
    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def channel(self) -> MixerChannel:
        return MixerChannel(gain_db=self._gain_db, muted=self._muted, pan=self._pan)

    @property
    def instrument(self) -> str:
        return self.voice.kind.value if self.voice is not None else ""

    # ----------------------------
    # Binding / mixer setters
    # ----------------------------
    def bind(
        self,
        notes: Sequence[NoteEvent],
        *,
        meter: Meter = COMMON_TIME,
        tempo: float = DEFAULT_TEMPO,
        loop_beats: float = 16.0,
    ) -> None:
        if self.voice is None:
            return
        self.notes = bind_notes(
            notes,
            percussive=self.voice.percussive,
            meter=meter,
            tempo=tempo,
            loop_beats=loop_beats,
            track_name=self.name,
        )

    def set_gain(self, db: float) -> float:
        """Clamp to [-60, 0] dB and ramp there; returns the applied value.
        Non-finite input leaves the level unchanged."""
        value = _as_finite(db)
        if value is None:
            logger.warning("⚠️ Track %r: volume %r ignored (not a finite number)", self.name, db)
            return self._gain_db
        self._gain_db = clamp(value, MIN_VOLUME_DB, MAX_VOLUME_DB)
        if self._gain is not None:
            self._gain.ramp_to(db_to_gain(self._gain_db), GAIN_RAMP_SECONDS)
        return self._gain_db

    def set_mute(self, muted: bool) -> bool:
        self._muted = bool(muted)
        if self._mute is not None:
            self._mute.ramp_to(0.0 if self._muted else 1.0, MUTE_RAMP_SECONDS)
        return self._muted

    def toggle_mute(self) -> bool:
        return self.set_mute(not self._muted)

    def set_pan(self, value: float, ramp_s: float = PAN_RAMP_SECONDS) -> float:
        pan = _as_finite(value)
        if pan is None:
            logger.warning("⚠️ Track %r: pan %r ignored (not a finite number)", self.name, value)
            return self._pan
        self._pan = clamp(pan, -1.0, 1.0)
        if self._panner is not None:
            self._panner.ramp_to(self._pan, ramp_s)
        return self._pan

    # ----------------------------
    # Runtime
    # ----------------------------
    def dispatch(self, note: BoundNote, at_frame: int, bpm: float) -> bool:
        """Forward one scheduled occurrence to the voice. No-op once disposed."""
        voice = self.voice
        if voice is None:
            logger.debug("Stale event for disposed track %d ignored", self.index)
            return False
        ok = voice.trigger(note.frequency, note.duration.to_seconds(bpm), note.velocity, at_frame)
        if ok:
            self.triggered += 1
        return ok

    def render(self, frame: int, frames: int) -> FloatArray:
        """Stereo (frames, 2) block after gain, mute and pan."""
        voice = self.voice
        if voice is None or self._gain is None or self._mute is None or self._panner is None:
            return np.zeros((frames, 2))

        mono = voice.render(frame, frames) * self._gain.render(frames) * self._mute.render(frames)
        left, right = equal_power_pan(self._panner.render(frames))
        return np.stack((mono * left, mono * right), axis=1)

    def cancel_pending(self, from_frame: int) -> int:
        if self.voice is None:
            return 0
        return self.voice.cancel_pending(from_frame)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        voice, self.voice = self.voice, None
        try:
            if voice is not None:
                voice.dispose()
        finally:
            self.notes = ()
            self._gain = self._mute = self._panner = None
            logger.debug("Track %d (%s) disposed", self.index, self.name)
