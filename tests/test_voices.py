from __future__ import annotations

import logging

import numpy as np
import pytest

from core.composition_models import InstrumentKind
from core.voices import (
    FMVoice,
    MembraneParams,
    MembraneVoice,
    MetalVoice,
    MonoVoice,
    PolyVoice,
    build_voice,
    default_params,
)

SR = 8000


@pytest.mark.parametrize(
    "tag, cls",
    [
        ("membranesynth", MembraneVoice),
        ("metalsynth", MetalVoice),
        ("fmsynth", FMVoice),
        ("monosynth", MonoVoice),
        ("polysynth", PolyVoice),
        (InstrumentKind.fm, FMVoice),
    ],
)
def test_factory_maps_tags(tag, cls):
    assert isinstance(build_voice(tag, sample_rate=SR), cls)


def test_unknown_tag_builds_poly_with_warning(caplog):
    with caplog.at_level(logging.WARNING):
        v = build_voice("noise", sample_rate=SR)
    assert isinstance(v, PolyVoice)
    assert "noise" in caplog.text


def test_missing_tag_builds_poly():
    assert isinstance(build_voice(None, sample_rate=SR), PolyVoice)


def test_params_type_is_checked():
    with pytest.raises(TypeError):
        build_voice("fmsynth", MembraneParams(), sample_rate=SR)


def test_params_are_never_shared():
    a = build_voice("polysynth", sample_rate=SR)
    b = build_voice("polysynth", sample_rate=SR)
    assert a.params is not b.params
    assert default_params("fmsynth") is not default_params("fmsynth")


@pytest.mark.parametrize("kind", list(InstrumentKind))
def test_every_voice_renders_finite_audio(kind):
    v = build_voice(kind, sample_rate=SR)
    assert v.trigger(110.0, 0.05, 0.8, at_frame=0)
    block = v.render(0, 512)
    assert block.shape == (512,)
    assert np.all(np.isfinite(block))
    assert np.any(block != 0.0)


def test_note_starts_exactly_on_its_frame():
    v = build_voice("polysynth", sample_rate=SR)
    v.trigger(440.0, 0.1, 1.0, at_frame=100)
    assert not np.any(v.render(0, 100))
    block = v.render(100, 128)
    assert np.any(block != 0.0)
    assert v.active_notes(150) == 1


def test_cancel_pending_keeps_sounding_notes():
    v = build_voice("polysynth", sample_rate=SR)
    v.trigger(440.0, 0.5, 1.0, at_frame=0)
    v.trigger(550.0, 0.5, 1.0, at_frame=1000)
    assert v.pending_notes(500) == 1
    assert v.cancel_pending(500) == 1
    assert v.pending_notes(500) == 0
    assert v.active_notes(500) == 1


def test_monophonic_voice_cuts_previous_note():
    v = build_voice("monosynth", sample_rate=SR)
    v.trigger(220.0, 1.0, 1.0, at_frame=0)
    v.trigger(330.0, 1.0, 1.0, at_frame=100)
    assert v.active_notes(150) == 1


def test_poly_voice_layers_chords():
    v = build_voice("polysynth", sample_rate=SR)
    for f in (261.6, 329.6, 392.0):
        v.trigger(f, 0.5, 0.7, at_frame=0)
    assert v.active_notes(10) == 3


def test_disposed_voice_ignores_triggers():
    v = build_voice("amsynth", sample_rate=SR)
    v.trigger(220.0, 0.5, 1.0, at_frame=0)
    v.dispose()
    assert v.disposed
    assert v.trigger(220.0, 0.5, 1.0, at_frame=10) is False
    assert not np.any(v.render(0, 128))
