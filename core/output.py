# core/output.py
"""
输出驱动：谁来拉 engine.render()

- DeviceOutput: 声卡播放（sounddevice OutputStream，回调里拉 render）
- HeadlessPump: 没有声卡时（服务端默认），后台线程按实时速度拉 render，
  这样 transport / 分析器 / 录音在服务器上照样工作
- bounce(): 离线渲染 N 秒（CLI 用），不受实时速度限制
"""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Optional, Protocol, Union

import numpy as np
import soundfile as sf

from core.engine import AudioEngine
from core.errors import EngineError

logger = logging.getLogger(__name__)


class OutputDriver(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    @property
    def running(self) -> bool: ...


# ---------------------------
# Device playback
# ---------------------------
class DeviceOutput:
    """Real-time playback on the default (or given) output device."""

    def __init__(self, engine: AudioEngine, *, block_size: int = 512, device: Optional[Union[int, str]] = None) -> None:
        self.engine = engine
        self.block_size = int(block_size)
        self.device = device
        self._stream = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    def _callback(self, outdata, frames, time_info, status) -> None:
        if status:
            logger.debug("output stream status: %s", status)
        outdata[:] = self.engine.render(frames)

    def start(self) -> None:
        if self._stream is not None:
            return
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise EngineError(
                "Device playback needs the 'sounddevice' package and PortAudio "
                "(pip install 'promptloop[playback]'), or set AUDIO_OUTPUT=headless"
            ) from e

        self.engine.init()
        stream = sd.OutputStream(
            samplerate=self.engine.sample_rate,
            channels=2,
            dtype="float32",
            blocksize=self.block_size,
            device=self.device,
            callback=self._callback,
        )
        stream.start()
        self._stream = stream
        logger.info("🔊 [Output] device stream started (%d Hz, block %d)", self.engine.sample_rate, self.block_size)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.info("🔇 [Output] device stream closed")


# ---------------------------
# Headless real-time pump
# ---------------------------
class HeadlessPump:
    """
    后台线程，按 block_size / sample_rate 的节奏拉 render。
    落后太多（比如进程被挂起）时直接追平，不补渲染。
    """

    MAX_LAG_BLOCKS = 8

    def __init__(self, engine: AudioEngine, *, block_size: int = 512) -> None:
        self.engine = engine
        self.block_size = int(block_size)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self.engine.init()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="promptloop-pump", daemon=True)
        self._thread.start()
        logger.info("✅ [Output] headless pump started")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        t, self._thread = self._thread, None
        if t is not None:
            t.join(timeout)
            logger.info("🛑 [Output] headless pump stopped")

    def _run(self) -> None:
        period = self.block_size / self.engine.sample_rate
        deadline = time.monotonic()
        while not self._stop.is_set():
            self.engine.render(self.block_size)
            deadline += period
            now = time.monotonic()
            if now - deadline > period * self.MAX_LAG_BLOCKS:
                deadline = now
            wait = deadline - now
            if wait > 0:
                self._stop.wait(wait)


def build_output(engine: AudioEngine, mode: str, *, block_size: int = 512) -> Optional[OutputDriver]:
    """AUDIO_OUTPUT -> driver ("none" -> None: nothing pulls audio, tests drive render())."""
    if mode == "device":
        return DeviceOutput(engine, block_size=block_size)
    if mode == "headless":
        return HeadlessPump(engine, block_size=block_size)
    return None


# ---------------------------
# Offline
# ---------------------------
def bounce(engine: AudioEngine, seconds: float, *, block_size: int = 4096) -> np.ndarray:
    """Render `seconds` of master output as fast as possible (float32, (n, 2))."""
    total = max(0, int(round(seconds * engine.sample_rate)))
    blocks = []
    done = 0
    while done < total:
        n = min(block_size, total - done)
        blocks.append(engine.render(n))
        done += n
    if not blocks:
        return np.zeros((0, 2), dtype=np.float32)
    return np.concatenate(blocks)


def write_wav(path: Union[str, Path], audio: np.ndarray, sample_rate: int) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(out), np.clip(audio, -1.0, 1.0), int(sample_rate), subtype="PCM_16")
    logger.info("✅ [Output] wrote %s (%.2fs)", out.name, audio.shape[0] / sample_rate)
    return out
