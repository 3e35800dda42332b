import pytest
from pydantic import ValidationError

from core.clock import TransportState
from core.composition_models import CompositionDocument
from core.engine import TransportSnapshot
from core.models import (
    AnalysisResponse,
    GenerateRequest,
    TempoRequest,
    TrackInfo,
    TransportStateResponse,
    VolumeRequest,
)
from core.track import Track
from core.voices import build_voice


def test_generate_request_strips_prompt():
    assert GenerateRequest(prompt="  jazzy  ").prompt == "jazzy"
    assert GenerateRequest(prompt="x").autoplay is False


@pytest.mark.parametrize("prompt", ["", "    ", "x" * 2001])
def test_generate_request_rejects_bad_prompt(prompt):
    with pytest.raises(ValidationError):
        GenerateRequest(prompt=prompt)


def test_requests_forbid_extra():
    with pytest.raises(ValidationError):
        TempoRequest(bpm=120, ramp=2)
    with pytest.raises(ValidationError):
        VolumeRequest(db=-3, track=1)


def test_tempo_request_does_not_clamp():
    # range is enforced by the engine, not the contract
    assert TempoRequest(bpm=500).bpm == 500


def test_track_info_from_track():
    t = Track(1, build_voice("metalsynth", sample_rate=8000), name="Hat", gain_db=-12, pan=0.25, sample_rate=8000)
    info = TrackInfo.from_track(t)
    assert info.model_dump() == {
        "index": 1,
        "name": "Hat",
        "instrument": "metalsynth",
        "volume_db": -12.0,
        "muted": False,
        "pan": 0.25,
        "notes": 0,
    }


def test_transport_state_serializes_enum_value():
    snap = TransportSnapshot(
        state=TransportState.paused,
        bpm=120.0,
        target_bpm=140.0,
        position="1:2:0",
        position_beats=6.0,
        loop=True,
        loop_bars=4,
        track_count=3,
        recording=False,
        title="T",
    )
    body = TransportStateResponse.from_snapshot(snap).model_dump(mode="json")
    assert body["state"] == "paused"
    assert body["position"] == "1:2:0"
    assert body["title"] == "T"


def test_analysis_from_bytes():
    r = AnalysisResponse.from_bytes(bytes([0, 127, 255]))
    assert r.bins == 3
    assert r.values == [0, 127, 255]


def test_empty_analysis():
    assert AnalysisResponse.from_bytes(b"").model_dump() == {"bins": 0, "values": []}


def test_composition_document_round_trip_through_wire():
    doc = CompositionDocument.parse({"title": "A", "tracks": [{"type": "fmsynth"}]})
    assert CompositionDocument.parse(doc.to_wire()) == doc


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_volume_request_rejects_non_finite(bad):
    with pytest.raises(ValidationError):
        VolumeRequest(db=bad)
