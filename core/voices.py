"""
Voice factory.

One voice class per instrument kind, each with its own frozen parameter
struct. `build_voice(kind)` is the only constructor the engine uses; unknown
kinds resolve to the polyphonic default (see InstrumentKind.resolve).

A voice renders whole notes up front when triggered (the envelope, pitch
sweep and filter are all known at that point) and then mixes the pending /
sounding notes into each render block, sample-aligned to their start frame.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Type, Union

import numpy as np
from scipy.signal import butter, sosfilt

from core.composition_models import InstrumentKind
from core.dsp import (
    ADSR,
    FloatArray,
    osc_saw,
    osc_sine,
    osc_square,
    osc_triangle,
    phase_from_curve,
    phase_of,
)

logger = logging.getLogger(__name__)

MAX_NOTE_SECONDS = 30.0
MIN_NOTE_SECONDS = 0.005
CUT_FADE_FRAMES = 64

_WAVEFORMS = {
    "sine": osc_sine,
    "square": osc_square,
    "sawtooth": osc_saw,
    "triangle": osc_triangle,
}

# MetalSynth-style inharmonic partial ratios
_METAL_RATIOS = (1.0, 1.483, 1.932, 2.546, 2.630, 3.897)


# =========================
# Parameter structs
# =========================
@dataclass(frozen=True)
class MembraneParams:
    """Pitched percussion: fast downward pitch sweep, long release (kicks/toms)."""

    pitch_decay: float = 0.05
    octaves: float = 10.0
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.001, decay=0.4, sustain=0.01, release=1.4))


@dataclass(frozen=True)
class MetalParams:
    """Inharmonic, noisy, short decay (cymbals/hi-hats)."""

    harmonicity: float = 5.1
    modulation_index: float = 32.0
    resonance: float = 4000.0
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.001, decay=0.1, sustain=0.0, release=0.01))


@dataclass(frozen=True)
class FMParams:
    """Bright sustained tones (bass/bells)."""

    harmonicity: float = 3.0
    modulation_index: float = 10.0
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.01, decay=0.01, sustain=1.0, release=0.5))
    modulation_envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.5, decay=0.0, sustain=1.0, release=0.5))


@dataclass(frozen=True)
class AMParams:
    """Vintage amplitude-modulated timbres."""

    harmonicity: float = 2.0
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.1, decay=0.1, sustain=1.0, release=1.0))
    modulation_envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.5, decay=0.0, sustain=1.0, release=0.5))


@dataclass(frozen=True)
class MonoParams:
    """Single-voice lead with a filter envelope."""

    waveform: str = "square"
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.1, decay=0.3, sustain=0.9, release=1.0))
    filter_base_hz: float = 200.0
    filter_octaves: float = 3.5
    filter_envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.6, decay=0.2, sustain=0.5, release=2.0))


@dataclass(frozen=True)
class PolyParams:
    """Chord-capable default voice."""

    waveform: str = "triangle"
    envelope: ADSR = field(default_factory=lambda: ADSR(attack=0.1, decay=0.2, sustain=0.5, release=1.0))
    max_polyphony: int = 32


VoiceParams = Union[MembraneParams, MetalParams, FMParams, AMParams, MonoParams, PolyParams]


# =========================
# Voice base
# =========================
@dataclass
class _Sounding:
    start: int
    samples: FloatArray
    cut: Optional[int] = None

    @property
    def end(self) -> int:
        return self.start + int(self.samples.shape[0])


class Voice:
    """
    Synthesis unit owned by exactly one Track.
    Public surface: trigger(), render(), cancel_pending(), dispose().
    """

    kind: ClassVar[InstrumentKind]
    params_type: ClassVar[type]
    monophonic: ClassVar[bool] = False
    max_polyphony: int = 32

    def __init__(self, params: VoiceParams, sample_rate: int) -> None:
        self.params = params
        self.sample_rate = int(sample_rate)
        self._notes: List[_Sounding] = []
        self._disposed = False

    # ----------------------------
    # Read
    # ----------------------------
    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def percussive(self) -> bool:
        return self.kind.percussive

    def active_notes(self, frame: int) -> int:
        """Notes that have started and not finished at `frame`."""
        return sum(1 for n in self._notes if n.start <= frame < (n.cut or n.end))

    def pending_notes(self, frame: int) -> int:
        """Notes scheduled to start at or after `frame`."""
        return sum(1 for n in self._notes if n.start >= frame)

    # ----------------------------
    # Mutations
    # ----------------------------
    def trigger(self, frequency: float, duration_s: float, velocity: float, at_frame: int) -> bool:
        """
        Schedule a note whose onset is exactly `at_frame` (absolute engine frame).
        Returns False (and does nothing) once the voice is disposed.
        """
        if self._disposed:
            logger.debug("Stale trigger on disposed %s voice ignored", self.kind.value)
            return False

        hold = float(min(max(duration_s, MIN_NOTE_SECONDS), MAX_NOTE_SECONDS))
        vel = float(min(max(velocity, 0.0), 1.0))
        samples = self._synthesize(float(frequency), hold) * vel

        if self.monophonic:
            for n in self._notes:
                if n.start < at_frame < n.end:
                    n.cut = at_frame if n.cut is None else min(n.cut, at_frame)

        self._notes.append(_Sounding(start=int(at_frame), samples=samples))
        self._notes.sort(key=lambda n: n.start)
        while len(self._notes) > self.max_polyphony:
            self._notes.pop(0)
        return True

    def render(self, frame: int, frames: int) -> FloatArray:
        """Mix every note overlapping [frame, frame + frames) into a mono block."""
        out = np.zeros(frames)
        if self._disposed or not self._notes:
            return out

        block_end = frame + frames
        keep: List[_Sounding] = []
        for n in self._notes:
            end = n.end if n.cut is None else min(n.end, n.cut)
            if end <= frame:
                continue  # finished
            keep.append(n)
            if n.start >= block_end:
                continue  # pending

            lo = max(frame, n.start)
            hi = min(block_end, end)
            chunk = n.samples[lo - n.start:hi - n.start]
            if n.cut is not None:
                pos = np.arange(lo, hi)
                chunk = chunk * np.clip((n.cut - pos) / CUT_FADE_FRAMES, 0.0, 1.0)
            out[lo - frame:hi - frame] += chunk

        self._notes = keep
        return out

    def cancel_pending(self, from_frame: int) -> int:
        """Drop notes that have not started yet; sounding notes ring out."""
        before = len(self._notes)
        self._notes = [n for n in self._notes if n.start < from_frame]
        return before - len(self._notes)

    def dispose(self) -> None:
        self._notes.clear()
        self._disposed = True

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        raise NotImplementedError


# =========================
# Concrete voices
# =========================
class MembraneVoice(Voice):
    kind = InstrumentKind.membrane
    params_type = MembraneParams
    monophonic = True
    params: MembraneParams

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        sr = self.sample_rate
        env = p.envelope.render(hold_s, sr)
        n = env.shape[0]

        # exponential sweep from f*octaves down to f over pitch_decay
        t = np.arange(n, dtype=np.float64) / sr
        sweep = np.clip(t / max(p.pitch_decay, 1e-4), 0.0, 1.0)
        freq = frequency * p.octaves * (1.0 / p.octaves) ** sweep
        freq = np.minimum(freq, sr / 2.0)
        return osc_sine(phase_from_curve(freq, sr)) * env


class MetalVoice(Voice):
    kind = InstrumentKind.metal
    params_type = MetalParams
    monophonic = True
    params: MetalParams

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        sr = self.sample_rate
        env = p.envelope.render(hold_s, sr)
        n = env.shape[0]

        out = np.zeros(n)
        for ratio in _METAL_RATIOS:
            f = frequency * ratio
            mod = osc_square(phase_of(f * p.harmonicity, n, sr))
            out += osc_square(phase_of(f, n, sr) + p.modulation_index * mod / (2 * np.pi))
        out /= len(_METAL_RATIOS)

        nyq = sr / 2.0
        if p.resonance < nyq * 0.95:
            sos = butter(2, p.resonance / nyq, btype="high", output="sos")
            out = sosfilt(sos, out)
        return out * env


class FMVoice(Voice):
    kind = InstrumentKind.fm
    params_type = FMParams
    monophonic = True
    params: FMParams

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        sr = self.sample_rate
        env = p.envelope.render(hold_s, sr)
        n = env.shape[0]
        mod_env = _fit(p.modulation_envelope.render(hold_s, sr), n)

        modulator = osc_square(phase_of(frequency * p.harmonicity, n, sr))
        inst_freq = frequency + frequency * p.modulation_index * mod_env * modulator
        return osc_sine(phase_from_curve(inst_freq, sr)) * env


class AMVoice(Voice):
    kind = InstrumentKind.am
    params_type = AMParams
    monophonic = True
    params: AMParams

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        sr = self.sample_rate
        env = p.envelope.render(hold_s, sr)
        n = env.shape[0]
        mod_env = _fit(p.modulation_envelope.render(hold_s, sr), n)

        phase = phase_of(frequency, n, sr)
        carrier = (osc_sine(phase) + 0.5 * osc_sine(2.0 * phase)) / 1.5
        modulator = osc_square(phase_of(frequency * p.harmonicity, n, sr))
        # modulator mapped to [0, 1] gain
        gain = (modulator * mod_env + 1.0) / 2.0
        return carrier * gain * env


class MonoVoice(Voice):
    kind = InstrumentKind.mono
    params_type = MonoParams
    monophonic = True
    params: MonoParams

    _FILTER_BLOCK = 256

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        sr = self.sample_rate
        env = p.envelope.render(hold_s, sr)
        n = env.shape[0]
        osc = _WAVEFORMS.get(p.waveform, osc_square)
        raw = osc(phase_of(frequency, n, sr))

        f_env = _fit(p.filter_envelope.render(hold_s, sr), n)
        cutoff = p.filter_base_hz * 2.0 ** (p.filter_octaves * f_env)
        return self._swept_lowpass(raw, cutoff) * env

    def _swept_lowpass(self, audio: FloatArray, cutoff: FloatArray) -> FloatArray:
        # filter changes every block; state carried so blocks join without clicks
        nyq = self.sample_rate / 2.0
        out = np.empty_like(audio)
        zi = np.zeros((1, 2))
        for start in range(0, audio.shape[0], self._FILTER_BLOCK):
            end = min(start + self._FILTER_BLOCK, audio.shape[0])
            wn = float(np.clip(np.mean(cutoff[start:end]) / nyq, 0.001, 0.99))
            sos = butter(2, wn, btype="low", output="sos")
            out[start:end], zi = sosfilt(sos, audio[start:end], zi=zi)
        return out


class PolyVoice(Voice):
    kind = InstrumentKind.poly
    params_type = PolyParams
    params: PolyParams

    def __init__(self, params: PolyParams, sample_rate: int) -> None:
        super().__init__(params, sample_rate)
        self.max_polyphony = max(1, int(params.max_polyphony))

    def _synthesize(self, frequency: float, hold_s: float) -> FloatArray:
        p = self.params
        env = p.envelope.render(hold_s, self.sample_rate)
        osc = _WAVEFORMS.get(p.waveform, osc_triangle)
        return osc(phase_of(frequency, env.shape[0], self.sample_rate)) * env


def _fit(curve: FloatArray, n: int) -> FloatArray:
    if curve.shape[0] >= n:
        return curve[:n]
    return np.pad(curve, (0, n - curve.shape[0]), mode="edge")


# =========================
# Factory
# =========================
_REGISTRY: Dict[InstrumentKind, Type[Voice]] = {
    cls.kind: cls
    for cls in (MembraneVoice, MetalVoice, FMVoice, AMVoice, MonoVoice, PolyVoice)
}


def default_params(kind: Union[InstrumentKind, str, None]) -> VoiceParams:
    """Fresh parameter struct for a kind; never shared between voices."""
    return _REGISTRY[InstrumentKind.resolve(kind)].params_type()


def build_voice(
    kind: Union[InstrumentKind, str, None],
    params: Optional[VoiceParams] = None,
    *,
    sample_rate: int = 44100,
) -> Voice:
    """
    Instrument tag + parameters -> concrete voice.
    Unknown tags never fail: they resolve to the polyphonic default.
    """
    resolved = InstrumentKind.resolve(kind)
    voice_cls = _REGISTRY[resolved]
    if params is None:
        params = voice_cls.params_type()
    elif not isinstance(params, voice_cls.params_type):
        raise TypeError(
            f"{voice_cls.__name__} expects {voice_cls.params_type.__name__}, got {type(params).__name__}"
        )
    return voice_cls(params, sample_rate)
