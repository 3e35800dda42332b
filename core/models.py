from __future__ import annotations

from typing import List, Optional

# ---------------------------------------------------------
# ⚠️ 本文件必须运行在 Pydantic V2 环境下
# 如果报错 ImportError，请执行：pip install "pydantic>=2.0"
# ---------------------------------------------------------
from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from core.clock import TransportState
from core.composition_models import CompositionDocument
from core.engine import AudioEngine, TransportSnapshot
from core.track import Track


# =========================
# Base Model Config
# =========================
class _ContractBaseModel(BaseModel):
    """
    HTTP contract hardening:
    - forbid extra fields in requests and responses
    """

    model_config = ConfigDict(extra="forbid")


# =========================
# Requests
# =========================
class TempoRequest(_ContractBaseModel):
    # Range is enforced by the engine (rejected, not clamped)
    bpm: float


class VolumeRequest(_ContractBaseModel):
    # Clamped to [-60, 0] by the track; NaN / inf rejected here
    db: float = Field(..., allow_inf_nan=False)


class LoopRequest(_ContractBaseModel):
    enabled: bool


class GenerateRequest(_ContractBaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    autoplay: bool = False

    @field_validator("prompt")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("prompt must not be blank")
        return v


# =========================
# Responses
# =========================
class TrackInfo(_ContractBaseModel):
    index: int
    name: str
    instrument: str
    volume_db: float
    muted: bool
    pan: float
    notes: int

    @classmethod
    def from_track(cls, t: Track) -> "TrackInfo":
        ch = t.channel
        return cls(
            index=t.index,
            name=t.name,
            instrument=t.instrument,
            volume_db=ch.gain_db,
            muted=ch.muted,
            pan=round(ch.pan, 6),
            notes=len(t.notes),
        )


class TransportStateResponse(_ContractBaseModel):
    state: TransportState
    bpm: float
    target_bpm: float
    position: str = Field(..., description="bars:quarters:sixteenths")
    position_beats: float
    loop: bool
    loop_bars: int
    track_count: int
    recording: bool
    title: Optional[str] = None

    @classmethod
    def from_snapshot(cls, s: TransportSnapshot) -> "TransportStateResponse":
        return cls(
            state=s.state,
            bpm=s.bpm,
            target_bpm=s.target_bpm,
            position=s.position,
            position_beats=s.position_beats,
            loop=s.loop,
            loop_bars=s.loop_bars,
            track_count=s.track_count,
            recording=s.recording,
            title=s.title,
        )


class CompositionSummary(_ContractBaseModel):
    title: str
    tempo: int
    time_signature: List[int]
    key: str
    tracks: List[TrackInfo]

    @classmethod
    def from_engine(cls, doc: CompositionDocument, engine: AudioEngine) -> "CompositionSummary":
        return cls(
            title=doc.title,
            tempo=doc.tempo,
            time_signature=[doc.time_signature.numerator, doc.time_signature.denominator],
            key=doc.key,
            tracks=[TrackInfo.from_track(t) for t in engine.tracks],
        )


class MuteResponse(_ContractBaseModel):
    index: int
    muted: bool


class RandomizeResponse(_ContractBaseModel):
    pans: List[float]


class AnalysisResponse(_ContractBaseModel):
    bins: int = Field(..., ge=0)
    values: List[int] = Field(default_factory=list, description="0..255 per frequency bin")

    @classmethod
    def from_bytes(cls, data: bytes) -> "AnalysisResponse":
        return cls(bins=len(data), values=list(data))


class ErrorResponse(_ContractBaseModel):
    detail: str
