"""
Audio engine: the single owner of playback state.

One AudioEngine per process. It owns the clock, the scheduler, the tracks of
the loaded composition and the master bus with its analyser/recorder taps.
Audio is pulled: an output driver (or a test, or the offline bouncer) calls
`render(frames)`; nothing advances between calls.

Every public method takes the same re-entrant lock as `render`, so control
calls from the API thread never interleave with a render quantum.
"""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np

from core.analyser import Analyser
from core.clock import Clock, TransportState, TEMPO_RAMP_SECONDS
from core.composition_models import MAX_TEMPO, MIN_TEMPO, CompositionDocument
from core.config import Settings, get_settings
from core.dsp import RENDER_QUANTUM, FloatArray
from core.errors import RecordingError
from core.mixer import MasterBus
from core.recorder import Capture, Recorder
from core.scheduler import Scheduler
from core.track import PAN_RAMP_SECONDS, Track

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportSnapshot:
    state: TransportState
    bpm: float
    target_bpm: float
    position: str
    position_beats: float
    loop: bool
    loop_bars: int
    track_count: int
    recording: bool
    title: Optional[str]


class AudioEngine:
    def __init__(self, settings: Optional[Settings] = None, *, rng: Optional[np.random.Generator] = None) -> None:
        self.settings = settings or get_settings()
        self.sample_rate = int(self.settings.sample_rate)
        self._rng = rng or np.random.default_rng()
        self._lock = threading.RLock()

        self.clock = Clock(self.sample_rate, loop_bars=self.settings.loop_bars)
        self.scheduler = Scheduler(self.clock, lookahead_s=self.settings.lookahead_s)

        self._tracks: List[Track] = []
        self._composition: Optional[CompositionDocument] = None
        self._master: Optional[MasterBus] = None
        self._analyser: Optional[Analyser] = None
        self._recorder: Optional[Recorder] = None

        self._frame = 0
        self._carry: FloatArray = np.zeros((0, 2))

    # ----------------------------
    # Read
    # ----------------------------
    @property
    def initialized(self) -> bool:
        return self._master is not None

    @property
    def is_playing(self) -> bool:
        return self.clock.is_playing

    @property
    def frame(self) -> int:
        """Next absolute frame to be rendered."""
        return self._frame

    @property
    def tracks(self) -> Tuple[Track, ...]:
        with self._lock:
            return tuple(self._tracks)

    @property
    def composition(self) -> Optional[CompositionDocument]:
        return self._composition

    @property
    def recording(self) -> bool:
        return self._recorder is not None and self._recorder.active

    def transport_state(self) -> TransportSnapshot:
        with self._lock:
            c = self.clock
            return TransportSnapshot(
                state=c.state,
                bpm=round(c.bpm, 3),
                target_bpm=round(c.target_bpm, 3),
                position=c.position_bbs(),
                position_beats=round(c.position, 6),
                loop=c.loop_enabled,
                loop_bars=c.loop_bars,
                track_count=len(self._tracks),
                recording=self.recording,
                title=self._composition.title if self._composition else None,
            )

    def sounding_voices(self) -> int:
        """Notes currently audible or queued across all tracks."""
        with self._lock:
            total = 0
            for t in self._tracks:
                if t.voice is not None:
                    total += t.voice.active_notes(self._frame) + t.voice.pending_notes(self._frame)
            return total

    # ----------------------------
    # Lifecycle
    # ----------------------------
    def init(self) -> None:
        """Build the master bus and its taps. Idempotent; called lazily."""
        with self._lock:
            if self._master is not None:
                return
            s = self.settings
            self._master = MasterBus(
                self.sample_rate,
                master_volume_db=s.master_volume_db,
                reverb_decay_s=s.reverb_decay_s,
                reverb_wet=s.reverb_wet,
                delay_time=s.delay_time,
                delay_feedback=s.delay_feedback,
                delay_wet=s.delay_wet,
            )
            self._analyser = Analyser(s.analyser_bins, s.analyser_smoothing)
            self._recorder = Recorder(self.sample_rate, prefix=s.recording_prefix)
            logger.info("✅ [Engine] initialized (%d Hz, lookahead %.0f ms)", self.sample_rate, s.lookahead_ms)

    def load_composition(self, doc: Any) -> CompositionDocument:
        """
        Replace the loaded composition.

        The document is fully parsed before anything changes, so a malformed one
        raises CompositionError and leaves the current composition playing.
        The old tracks are stopped and disposed before the new ones are built.
        """
        composition = CompositionDocument.parse(doc)

        with self._lock:
            self.init()
            self._stop_locked()
            self._dispose_tracks()
            if self._master is not None:
                self._master.clear()

            meter = composition.meter
            self.clock.configure(
                composition.tempo,
                beats_per_bar=meter.beats_per_bar,
                loop_bars=self.settings.loop_bars,
            )
            loop_beats = self.clock.loop_beats
            self._tracks = [
                Track.from_spec(
                    i,
                    spec,
                    meter=meter,
                    tempo=composition.tempo,
                    loop_beats=loop_beats,
                    sample_rate=self.sample_rate,
                )
                for i, spec in enumerate(composition.tracks)
            ]
            self.scheduler.attach(self._tracks)
            self._composition = composition

        logger.info(
            "🎼 [Engine] loaded %r: %d tracks @ %d bpm, %d/%d",
            composition.title,
            len(composition.tracks),
            composition.tempo,
            composition.time_signature.numerator,
            composition.time_signature.denominator,
        )
        return composition

    def clear(self) -> None:
        """Unload the composition (tracks disposed, transport stopped)."""
        with self._lock:
            self._stop_locked()
            self._dispose_tracks()
            self.scheduler.detach()
            self._composition = None

    def dispose(self) -> None:
        with self._lock:
            self.clear()
            if self._recorder is not None:
                self._recorder.discard()
            if self._master is not None:
                self._master.dispose()
            self._master = self._analyser = self._recorder = None
            self._carry = np.zeros((0, 2))
            logger.info("🧹 [Engine] disposed")

    # ----------------------------
    # Transport
    # ----------------------------
    def play(self) -> None:
        with self._lock:
            self.init()
            if self.clock.play():
                logger.info("▶️ [Transport] play @ %s", self.clock.position_bbs())

    def pause(self) -> None:
        with self._lock:
            if not self.clock.pause():
                return
            self.scheduler.rewind(self.clock.elapsed)
            self._cancel_pending()
            logger.info("⏸️ [Transport] pause @ %s", self.clock.position_bbs())

    def stop(self) -> None:
        with self._lock:
            self._stop_locked()
            logger.info("⏹️ [Transport] stop")

    def set_loop(self, enabled: bool) -> None:
        with self._lock:
            self.clock.set_loop(enabled)
            logger.info("🔁 [Transport] loop %s", "on" if enabled else "off")

    def set_tempo(self, bpm: float) -> bool:
        """Ramp to `bpm` over one second. Values outside [60, 200] are rejected."""
        try:
            value = float(bpm)
        except (TypeError, ValueError):
            value = math.nan
        if not math.isfinite(value) or not (MIN_TEMPO <= value <= MAX_TEMPO):
            logger.warning("⚠️ [Transport] tempo %r rejected (allowed %d..%d)", bpm, MIN_TEMPO, MAX_TEMPO)
            return False
        with self._lock:
            self.clock.set_tempo(value, TEMPO_RAMP_SECONDS)
        logger.info("⏱️ [Transport] tempo -> %.1f bpm", value)
        return True

    # ----------------------------
    # Mixer
    # ----------------------------
    def set_track_volume(self, index: int, db: float) -> Optional[float]:
        """Returns the applied (clamped) level, or None for an unknown track."""
        with self._lock:
            track = self._track_at(index)
            if track is None:
                return None
            return track.set_gain(db)

    def toggle_track_mute(self, index: int) -> bool:
        """Returns the new muted state; False for an unknown track."""
        with self._lock:
            track = self._track_at(index)
            if track is None:
                return False
            return track.toggle_mute()

    def randomize_parameters(self) -> List[float]:
        """New random pan in [-1, 1] for every track, ramped over one second."""
        with self._lock:
            pans = [t.set_pan(float(self._rng.uniform(-1.0, 1.0)), PAN_RAMP_SECONDS) for t in self._tracks]
        logger.info("🎲 [Mixer] randomized pan on %d tracks", len(pans))
        return pans

    # ----------------------------
    # Taps
    # ----------------------------
    def get_analysis_snapshot(self) -> bytes:
        """`analyser_bins` bytes once initialized, otherwise b""."""
        with self._lock:
            if self._analyser is None:
                return b""
            return self._analyser.snapshot()

    def start_recording(self) -> None:
        with self._lock:
            self.init()
            if self._recorder is None:
                raise RecordingError("Recorder not available")
            self._recorder.start()

    def stop_recording(self) -> Capture:
        with self._lock:
            if self._recorder is None:
                raise RecordingError("No recording in progress")
            return self._recorder.stop()

    # ----------------------------
    # Render
    # ----------------------------
    def render(self, frames: int) -> np.ndarray:
        """Pull `frames` of master output as float32 (frames, 2)."""
        frames = int(frames)
        with self._lock:
            master = self._master
            if master is None:
                return np.zeros((frames, 2), dtype=np.float32)

            blocks = [self._carry] if self._carry.shape[0] else []
            have = self._carry.shape[0]
            while have < frames:
                q = self._render_quantum(master)
                blocks.append(q)
                have += q.shape[0]

            out = np.concatenate(blocks) if blocks else np.zeros((0, 2))
            self._carry = out[frames:]
            delivered = out[:frames]
            # capture only what the caller receives; carry frames go out with the next pull
            if self._recorder is not None:
                self._recorder.push(delivered)
            return delivered.astype(np.float32)

    def _render_quantum(self, master: MasterBus) -> FloatArray:
        n = RENDER_QUANTUM
        frame = self._frame
        self.scheduler.fill(frame, n)

        dry = np.zeros((n, 2))
        for track in self._tracks:
            dry += track.render(frame, n)

        out = master.process(dry, self.clock.bpm)
        if self._analyser is not None:
            self._analyser.push(out)

        self.clock.advance(n)
        self._frame += n
        return out

    # ----------------------------
    # Internals (lock held)
    # ----------------------------
    def _stop_locked(self) -> None:
        self.clock.stop()
        self.scheduler.reset()
        self._cancel_pending()

    def _cancel_pending(self) -> None:
        dropped = sum(t.cancel_pending(self._frame) for t in self._tracks)
        if dropped:
            logger.debug("cancelled %d pending notes", dropped)

    def _dispose_tracks(self) -> None:
        old, self._tracks = self._tracks, []
        self.scheduler.detach()
        for t in old:
            t.dispose()

    def _track_at(self, index: int) -> Optional[Track]:
        if isinstance(index, bool) or not isinstance(index, int) or not (0 <= index < len(self._tracks)):
            logger.warning("⚠️ [Mixer] no track at index %r (%d loaded)", index, len(self._tracks))
            return None
        return self._tracks[index]

