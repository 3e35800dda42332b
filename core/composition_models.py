from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from enum import Enum
from typing import Any, Optional, Tuple, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic.config import ConfigDict

from core.errors import CompositionError
from core.timing import COMMON_TIME, Duration, Meter, parse_duration, parse_position, pitch_to_frequency

logger = logging.getLogger(__name__)

DEFAULT_TEMPO = 120
MIN_TEMPO = 60
MAX_TEMPO = 200
DEFAULT_VOLUME_DB = -5.0
MIN_VOLUME_DB = -60.0
MAX_VOLUME_DB = 0.0
DEFAULT_DURATION = "8n"

_VALID_DENOMINATORS = (1, 2, 4, 8, 16, 32)


def clamp(value: float, lo: float, hi: float) -> float:
    return float(min(max(value, lo), hi))


def _as_finite(value: Any) -> Optional[float]:
    """Numbers (and numeric strings) -> float; anything else -> None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


# =========================
# Enums
# =========================
class InstrumentKind(str, Enum):
    """Instrument tags understood by the voice factory (wire values)."""

    membrane = "membranesynth"
    metal = "metalsynth"
    fm = "fmsynth"
    am = "amsynth"
    mono = "monosynth"
    poly = "polysynth"

    @property
    def percussive(self) -> bool:
        return self in (InstrumentKind.membrane, InstrumentKind.metal)

    @classmethod
    def resolve(cls, tag: Any) -> "InstrumentKind":
        """Unknown, malformed or missing tags fall back to the polyphonic default."""
        if isinstance(tag, cls):
            return tag
        if tag is None or (isinstance(tag, str) and not tag.strip()):
            return cls.poly
        if isinstance(tag, str):
            try:
                return cls(tag.strip().lower())
            except ValueError:
                pass
        logger.warning("⚠️ Unknown instrument type %r, using %s", tag, cls.poly.value)
        return cls.poly


# =========================
# Base Model Config
# =========================
class _DocModel(BaseModel):
    """
    Composition documents come from a generator, not a human:
    - unknown fields are ignored
    - loaded documents are immutable
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# =========================
# Schemas
# =========================
class TimeSignature(_DocModel):
    numerator: int = 4
    denominator: int = 4

    @property
    def meter(self) -> Meter:
        return Meter(self.numerator, self.denominator)

    @classmethod
    def coerce(cls, raw: Any) -> "TimeSignature":
        """[n, d] / "n/d" / {numerator, denominator}; anything invalid -> 4/4."""
        if isinstance(raw, cls):
            return raw
        pair: Any = raw
        if isinstance(raw, str) and "/" in raw:
            pair = raw.split("/", 1)
        elif isinstance(raw, Mapping):
            pair = (raw.get("numerator"), raw.get("denominator"))

        if isinstance(pair, (list, tuple)) and len(pair) == 2:
            n, d = _as_finite(pair[0]), _as_finite(pair[1])
            if n is not None and d is not None and n.is_integer() and d.is_integer():
                if 1 <= n <= 32 and int(d) in _VALID_DENOMINATORS:
                    return cls(numerator=int(n), denominator=int(d))

        if raw is not None:
            logger.warning("⚠️ Invalid timeSignature %r, using 4/4", raw)
        return cls()


class NoteEvent(_DocModel):
    """
    One note of a track, as written by the generator.
    `time` and `duration` keep their wire notation; they are resolved against
    the document meter/tempo when the track is bound.
    """

    time: Union[str, float] = "0:0:0"
    pitch: Optional[Union[str, float]] = Field(default=None, validation_alias=AliasChoices("pitch", "note"))
    duration: Union[str, float] = DEFAULT_DURATION
    velocity: float = 1.0

    @field_validator("time", mode="before")
    @classmethod
    def _default_time(cls, v: Any) -> Any:
        return "0:0:0" if v is None else v

    @field_validator("duration", mode="before")
    @classmethod
    def _default_duration(cls, v: Any) -> Any:
        return DEFAULT_DURATION if v is None or v == "" else v

    @field_validator("pitch", mode="before")
    @classmethod
    def _blank_pitch(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("velocity", mode="before")
    @classmethod
    def _clamp_velocity(cls, v: Any) -> float:
        f = _as_finite(v)
        return 1.0 if f is None else clamp(f, 0.0, 1.0)

    @field_validator("time")
    @classmethod
    def _check_time(cls, v: Union[str, float]) -> Union[str, float]:
        parse_position(v, COMMON_TIME)
        return v

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, v: Union[str, float]) -> Union[str, float]:
        parse_duration(v, COMMON_TIME)
        return v

    @field_validator("pitch")
    @classmethod
    def _check_pitch(cls, v: Optional[Union[str, float]]) -> Optional[Union[str, float]]:
        if v is not None:
            pitch_to_frequency(v)
        return v

    def offset_beats(self, meter: Meter = COMMON_TIME, *, bpm: float = DEFAULT_TEMPO) -> float:
        return parse_position(self.time, meter, bpm=bpm)

    def length(self, meter: Meter = COMMON_TIME) -> Duration:
        return parse_duration(self.duration, meter)

    def frequency(self) -> Optional[float]:
        return None if self.pitch is None else pitch_to_frequency(self.pitch)


class TrackSpec(_DocModel):
    name: str = ""
    instrument: InstrumentKind = Field(
        default=InstrumentKind.poly,
        validation_alias=AliasChoices("type", "instrumentType", "instrument"),
        serialization_alias="type",
    )
    volume_db: float = Field(
        default=DEFAULT_VOLUME_DB,
        validation_alias=AliasChoices("volume", "volumeDb", "volume_db"),
        serialization_alias="volume",
    )
    pan: float = 0.0
    notes: Tuple[NoteEvent, ...] = ()
    # Accepted for forward compatibility; the mixing topology does not route per-track effects.
    effects: Tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        raw = dict(data)

        name = raw.get("name")
        raw["name"] = name.strip() if isinstance(name, str) else ""

        kind = InstrumentKind.resolve(raw.pop("type", raw.pop("instrumentType", raw.pop("instrument", None))))
        raw["instrument"] = kind

        raw["notes"] = cls._sanitize_notes(raw.get("notes"), kind, raw["name"])

        effects = raw.get("effects")
        raw["effects"] = tuple(e for e in effects if isinstance(e, str)) if isinstance(effects, list) else ()
        return raw

    @staticmethod
    def _sanitize_notes(notes: Any, kind: InstrumentKind, track_name: str) -> Tuple[NoteEvent, ...]:
        if notes is None:
            return ()
        if not isinstance(notes, (list, tuple)):
            logger.warning("⚠️ Track %r: notes is not a list, ignoring", track_name)
            return ()

        out = []
        for i, item in enumerate(notes):
            if isinstance(item, NoteEvent):
                note = item
            else:
                try:
                    note = NoteEvent.model_validate(item)
                except ValidationError as e:
                    logger.warning("⚠️ Track %r: dropping note #%d (%s)", track_name, i, e.errors()[0].get("msg"))
                    continue
            if note.pitch is None and not kind.percussive:
                logger.warning("⚠️ Track %r: dropping note #%d without pitch", track_name, i)
                continue
            out.append(note)
        return tuple(out)

    @field_validator("volume_db", mode="before")
    @classmethod
    def _clamp_volume(cls, v: Any) -> float:
        f = _as_finite(v)
        return DEFAULT_VOLUME_DB if f is None else clamp(f, MIN_VOLUME_DB, MAX_VOLUME_DB)

    @field_validator("pan", mode="before")
    @classmethod
    def _clamp_pan(cls, v: Any) -> float:
        f = _as_finite(v)
        return 0.0 if f is None else clamp(f, -1.0, 1.0)


class CompositionDocument(_DocModel):
    """
    Canonical composition loaded by the engine.
    Superseded wholesale by the next load; never partially updated.
    """

    title: str = "Untitled Composition"
    tempo: int = DEFAULT_TEMPO
    time_signature: TimeSignature = Field(
        default_factory=TimeSignature,
        validation_alias=AliasChoices("timeSignature", "time_signature"),
        serialization_alias="timeSignature",
    )
    key: str = ""
    tracks: Tuple[TrackSpec, ...] = ()

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return "Untitled Composition"

    @field_validator("key", mode="before")
    @classmethod
    def _default_key(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("tempo", mode="before")
    @classmethod
    def _clamp_tempo(cls, v: Any) -> int:
        f = _as_finite(v)
        if f is None or f <= 0:
            return DEFAULT_TEMPO
        return int(round(clamp(f, MIN_TEMPO, MAX_TEMPO)))

    @field_validator("time_signature", mode="before")
    @classmethod
    def _coerce_ts(cls, v: Any) -> TimeSignature:
        return TimeSignature.coerce(v)

    @field_validator("tracks", mode="before")
    @classmethod
    def _default_tracks(cls, v: Any) -> Any:
        return () if v is None else v

    @property
    def meter(self) -> Meter:
        return self.time_signature.meter

    @classmethod
    def parse(cls, raw: Any) -> "CompositionDocument":
        """
        Strict entry point for untrusted input.
        Raises CompositionError without touching any engine state.
        """
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, (str, bytes, bytearray)):
            try:
                raw = json.loads(raw)
            except ValueError as e:
                raise CompositionError(f"Composition document is not valid JSON: {e}") from e

        if not isinstance(raw, Mapping):
            raise CompositionError("Composition document must be a JSON object")

        tracks = raw.get("tracks")
        if tracks is not None:
            if not isinstance(tracks, list):
                raise CompositionError("'tracks' must be a list")
            for i, t in enumerate(tracks):
                if not isinstance(t, Mapping):
                    raise CompositionError(f"Track #{i} must be a JSON object")

        try:
            return cls.model_validate(dict(raw))
        except ValidationError as e:
            raise CompositionError(f"Invalid composition document: {e}") from e

    def to_wire(self) -> dict[str, Any]:
        """Dump using the generator's field names (timeSignature as [n, d], type, volume)."""
        data = self.model_dump(mode="json", by_alias=True)
        data["timeSignature"] = [self.time_signature.numerator, self.time_signature.denominator]
        return data
