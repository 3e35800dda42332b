"""
Musical time helpers.

All positions are expressed in quarter-note beats ("beats") and all
durations resolve to seconds at dispatch time, using whatever tempo the
transport has at that moment.

Accepted notations (same family the generator is prompted with):
- positions:  "bars:quarters:sixteenths" ("1:2:0", "0:1.5"), notation
  tokens ("4n", "1m"), or plain numbers = seconds
- durations:  "4n", "8n.", "8t", "1m", "0:2:0", or plain numbers = seconds
- pitches:    "C4", "F#3", "Bb2", "A" (octave 4), 440, "440hz"
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional, Union

Number = Union[int, float]
TimeValue = Union[str, Number, None]

A4_HZ = 440.0
A4_MIDI = 69
DEFAULT_OCTAVE = 4

_NOTE_OFFSETS = {"c": 0, "d": 2, "e": 4, "f": 5, "g": 7, "a": 9, "b": 11}
_ACCIDENTALS = {"": 0, "#": 1, "##": 2, "x": 2, "b": -1, "bb": -2}

_NOTE_RE = re.compile(r"^([a-g])(##|#|x|bb|b)?(-?\d+)?$")
_FREQ_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(hz)?$")
_NOTATION_RE = re.compile(r"^(\d+(?:\.\d+)?)([nmt])(\.?)$")
_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")


@dataclass(frozen=True)
class Meter:
    """Time signature; bar length is measured in quarter notes."""

    numerator: int = 4
    denominator: int = 4

    @property
    def beats_per_bar(self) -> float:
        return self.numerator * 4.0 / self.denominator


COMMON_TIME = Meter(4, 4)


@dataclass(frozen=True)
class Duration:
    """
    A note length that is either tempo-relative (beats) or absolute (seconds).
    Exactly one of the two is set.
    """

    beats: Optional[float] = None
    seconds: Optional[float] = None

    def to_seconds(self, bpm: float) -> float:
        if self.seconds is not None:
            return self.seconds
        return float(self.beats or 0.0) * 60.0 / bpm


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _notation_beats(token: str, meter: Meter) -> Optional[float]:
    m = _NOTATION_RE.match(token)
    if not m:
        return None

    amount = float(m.group(1))
    unit = m.group(2)
    dotted = bool(m.group(3))

    if unit == "m":
        beats = amount * meter.beats_per_bar
    else:
        if amount <= 0:
            raise ValueError(f"Invalid subdivision: {token!r}")
        beats = 4.0 / amount
        if unit == "t":
            beats *= 2.0 / 3.0

    if dotted:
        beats *= 1.5
    return beats


def _bbs_beats(token: str, meter: Meter) -> float:
    parts = token.split(":")
    if len(parts) > 3 or any(not p.strip() for p in parts):
        raise ValueError(f"Invalid bars:quarters:sixteenths value: {token!r}")
    try:
        nums = [float(p) for p in parts]
    except ValueError as e:
        raise ValueError(f"Invalid bars:quarters:sixteenths value: {token!r}") from e

    while len(nums) < 3:
        nums.append(0.0)
    bars, quarters, sixteenths = nums
    return bars * meter.beats_per_bar + quarters + sixteenths / 4.0


def parse_position(value: TimeValue, meter: Meter = COMMON_TIME, *, bpm: float = 120.0) -> float:
    """
    Resolve a note's `time` field to beats from the start of the loop.
    Numbers are seconds at `bpm` (the document tempo).
    """
    if value is None:
        return 0.0
    if _is_number(value):
        return float(value) * bpm / 60.0
    if not isinstance(value, str):
        raise ValueError(f"Unsupported time value: {value!r}")

    token = value.strip().lower()
    if not token:
        return 0.0
    if ":" in token:
        return _bbs_beats(token, meter)

    beats = _notation_beats(token, meter)
    if beats is not None:
        return beats
    if _NUMBER_RE.match(token):
        return float(token) * bpm / 60.0

    raise ValueError(f"Unsupported time value: {value!r}")


def parse_duration(value: TimeValue, meter: Meter = COMMON_TIME) -> Duration:
    """Resolve a note's `duration` token. Zero or negative lengths are rejected."""
    if _is_number(value):
        dur = Duration(seconds=float(value))
    elif isinstance(value, str):
        token = value.strip().lower()
        beats = _notation_beats(token, meter)
        if beats is None and ":" in token:
            beats = _bbs_beats(token, meter)
        if beats is not None:
            dur = Duration(beats=beats)
        elif _NUMBER_RE.match(token):
            dur = Duration(seconds=float(token))
        else:
            raise ValueError(f"Unsupported duration: {value!r}")
    else:
        raise ValueError(f"Unsupported duration: {value!r}")

    length = dur.seconds if dur.seconds is not None else dur.beats
    if length is None or not math.isfinite(length) or length <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return dur


def note_to_midi(name: str) -> int:
    m = _NOTE_RE.match(name.strip().lower())
    if not m:
        raise ValueError(f"Invalid note name: {name!r}")
    letter, accidental, octave = m.groups()
    octave_num = int(octave) if octave is not None else DEFAULT_OCTAVE
    return 12 * (octave_num + 1) + _NOTE_OFFSETS[letter] + _ACCIDENTALS[accidental or ""]


def midi_to_frequency(midi: float) -> float:
    return A4_HZ * (2.0 ** ((midi - A4_MIDI) / 12.0))


def pitch_to_frequency(pitch: Union[str, Number]) -> float:
    """Note name or frequency -> Hz. Raises ValueError on anything else."""
    if _is_number(pitch):
        freq = float(pitch)
    elif isinstance(pitch, str):
        token = pitch.strip().lower()
        fm = _FREQ_RE.match(token)
        freq = float(fm.group(1)) if fm else midi_to_frequency(note_to_midi(token))
    else:
        raise ValueError(f"Unsupported pitch: {pitch!r}")

    if not math.isfinite(freq) or freq <= 0:
        raise ValueError(f"Pitch must be a positive frequency: {pitch!r}")
    return freq
