import json
from pathlib import Path

import pytest

from core.composer_client import NetworkError
from core.composition_models import CompositionDocument
from core.config import Settings
from core.engine import AudioEngine
from core.generation_service import GenerationService


@pytest.fixture
def engine(tmp_path: Path):
    eng = AudioEngine(Settings(_env_file=None, SAMPLE_RATE=8000, OUTPUT_DIR=str(tmp_path / "outputs")))
    yield eng
    eng.dispose()


def _doc(title: str) -> CompositionDocument:
    return CompositionDocument.parse(
        {"title": title, "tempo": 100, "tracks": [{"type": "polysynth", "notes": [{"pitch": "C4"}]}]}
    )


def test_generate_and_load_replaces_composition(engine: AudioEngine):
    prompts = []

    def composer(prompt: str) -> CompositionDocument:
        prompts.append(prompt)
        return _doc("Generated")

    svc = GenerationService(engine, composer=composer)
    doc = svc.generate_and_load("lofi beat")

    assert prompts == ["lofi beat"]
    assert doc.title == "Generated"
    assert engine.composition is doc
    assert len(engine.tracks) == 1
    # load never starts playback by itself
    assert not engine.is_playing


def test_autoplay_starts_transport(engine: AudioEngine):
    svc = GenerationService(engine, composer=lambda p: _doc("Auto"))
    svc.generate_and_load("x", autoplay=True)
    assert engine.is_playing


def test_failure_keeps_current_composition_playing(engine: AudioEngine):
    engine.load_composition(_doc("Current"))
    engine.play()
    old_tracks = engine.tracks

    def composer(prompt: str) -> CompositionDocument:
        raise NetworkError("offline")

    svc = GenerationService(engine, composer=composer)
    with pytest.raises(NetworkError):
        svc.generate_and_load("anything")

    assert engine.composition.title == "Current"
    assert engine.is_playing
    assert engine.tracks == old_tracks
    assert not any(t.disposed for t in old_tracks)


def test_set_composer_overrides(engine: AudioEngine):
    svc = GenerationService(engine, composer=lambda p: _doc("First"))
    svc.set_composer(lambda p: _doc("Second"))
    assert svc.generate("x").title == "Second"


def test_save_document_default_name(engine: AudioEngine, tmp_path: Path):
    svc = GenerationService(engine, output_dir=tmp_path / "docs")
    out = svc.save_document(_doc("Lo-Fi Chill!!"))
    assert out.parent == tmp_path / "docs"
    assert out.name.startswith("Lo-Fi_Chill-")
    assert out.suffix == ".json"

    wire = json.loads(out.read_text(encoding="utf-8"))
    assert wire["title"] == "Lo-Fi Chill!!"
    assert CompositionDocument.parse(wire) == _doc("Lo-Fi Chill!!")


def test_save_document_explicit_path(engine: AudioEngine, tmp_path: Path):
    svc = GenerationService(engine)
    target = tmp_path / "nested" / "song.json"
    assert svc.save_document(_doc("S"), target) == target
    assert target.exists()


def test_default_output_dir_comes_from_settings(engine: AudioEngine):
    svc = GenerationService(engine)
    assert svc.output_dir == Path(engine.settings.output_dir)
