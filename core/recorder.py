# core/recorder.py
"""
录音模块：旁路采集 master 输出

- start() 开始采集；已在录音时再次 start 直接报错（RecordingError）
- stop() 结束采集并把音频交给调用方（Capture，WAV / PCM_16）
- 录多长由调用方决定（按 loop 长度计时后调用 stop），引擎不会自动停止
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import soundfile as sf

from core.dsp import FloatArray
from core.errors import RecordingError
from core.utils import timestamped_filename

logger = logging.getLogger(__name__)

MEDIA_TYPE_WAV = "audio/wav"


@dataclass(frozen=True)
class Capture:
    """A finished recording; the caller owns `data` once stop() returns."""

    data: bytes
    sample_rate: int
    channels: int
    frames: int
    filename: str
    media_type: str = MEDIA_TYPE_WAV

    @property
    def duration_s(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0


class Recorder:
    def __init__(self, sample_rate: int, *, channels: int = 2, prefix: str = "promptloop") -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.prefix = prefix
        self._chunks: Optional[List[FloatArray]] = None

    @property
    def active(self) -> bool:
        return self._chunks is not None

    @property
    def frames(self) -> int:
        return sum(c.shape[0] for c in self._chunks) if self._chunks else 0

    def start(self) -> None:
        if self._chunks is not None:
            raise RecordingError("Recording already in progress")
        self._chunks = []
        logger.info("🎙️ [Recorder] started")

    def push(self, block: FloatArray) -> None:
        """Append one master block; ignored while idle."""
        if self._chunks is not None:
            self._chunks.append(np.array(block, dtype=np.float32, copy=True))

    def stop(self) -> Capture:
        if self._chunks is None:
            raise RecordingError("No recording in progress")
        chunks, self._chunks = self._chunks, None

        audio = np.concatenate(chunks) if chunks else np.zeros((0, self.channels), dtype=np.float32)
        buf = io.BytesIO()
        sf.write(buf, np.clip(audio, -1.0, 1.0), self.sample_rate, format="WAV", subtype="PCM_16")

        capture = Capture(
            data=buf.getvalue(),
            sample_rate=self.sample_rate,
            channels=self.channels,
            frames=int(audio.shape[0]),
            filename=timestamped_filename(self.prefix, ".wav"),
        )
        logger.info("✅ [Recorder] captured %.2fs -> %s", capture.duration_s, capture.filename)
        return capture

    def discard(self) -> None:
        """Drop an in-progress capture without producing output (engine dispose)."""
        self._chunks = None
