from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Request, status
from fastapi.responses import Response

from core.engine import AudioEngine
from core.errors import CompositionError, RecordingError
from core.models import (
    AnalysisResponse,
    CompositionSummary,
    LoopRequest,
    MuteResponse,
    RandomizeResponse,
    TempoRequest,
    TrackInfo,
    TransportStateResponse,
    VolumeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["Transport"])


def get_engine(request: Request) -> AudioEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Audio engine not available")
    return engine


def _state(engine: AudioEngine) -> TransportStateResponse:
    return TransportStateResponse.from_snapshot(engine.transport_state())


def _track_or_404(engine: AudioEngine, index: int) -> None:
    if not (0 <= index < len(engine.tracks)):
        raise HTTPException(status_code=404, detail=f"Track {index} not found")


# ===================================================================
# Composition
# ===================================================================
@router.post("/composition", response_model=CompositionSummary, summary="Load a composition document")
def load_composition(request: Request, doc: Dict[str, Any] = Body(...)) -> CompositionSummary:
    """
    Contract:
    - 200: loaded (previous composition stopped and disposed)
    - 400: malformed document (previous composition untouched)
    """
    engine = get_engine(request)
    try:
        loaded = engine.load_composition(doc)
    except CompositionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CompositionSummary.from_engine(loaded, engine)


@router.get("/composition", response_model=CompositionSummary)
def get_composition(request: Request) -> CompositionSummary:
    engine = get_engine(request)
    doc = engine.composition
    if doc is None:
        raise HTTPException(status_code=404, detail="No composition loaded")
    return CompositionSummary.from_engine(doc, engine)


# ===================================================================
# Transport
# ===================================================================
@router.get("/transport", response_model=TransportStateResponse)
def transport_state(request: Request) -> TransportStateResponse:
    return _state(get_engine(request))


@router.post("/transport/play", response_model=TransportStateResponse)
def play(request: Request) -> TransportStateResponse:
    engine = get_engine(request)
    engine.play()
    return _state(engine)


@router.post("/transport/pause", response_model=TransportStateResponse)
def pause(request: Request) -> TransportStateResponse:
    engine = get_engine(request)
    engine.pause()
    return _state(engine)


@router.post("/transport/stop", response_model=TransportStateResponse)
def stop(request: Request) -> TransportStateResponse:
    engine = get_engine(request)
    engine.stop()
    return _state(engine)


@router.put("/transport/loop", response_model=TransportStateResponse)
def set_loop(request: Request, body: LoopRequest) -> TransportStateResponse:
    engine = get_engine(request)
    engine.set_loop(body.enabled)
    return _state(engine)


@router.put("/transport/tempo", response_model=TransportStateResponse)
def set_tempo(request: Request, body: TempoRequest) -> TransportStateResponse:
    """
    Contract:
    - 200: ramping to the new tempo
    - 400: outside 60..200 bpm (tempo unchanged)
    """
    engine = get_engine(request)
    if not engine.set_tempo(body.bpm):
        raise HTTPException(status_code=400, detail="Tempo must be between 60 and 200 bpm")
    return _state(engine)


# ===================================================================
# Mixer
# ===================================================================
@router.put("/tracks/{index}/volume", response_model=TrackInfo)
def set_track_volume(request: Request, index: int, body: VolumeRequest) -> TrackInfo:
    engine = get_engine(request)
    _track_or_404(engine, index)
    engine.set_track_volume(index, body.db)
    return TrackInfo.from_track(engine.tracks[index])


@router.post("/tracks/{index}/mute", response_model=MuteResponse)
def toggle_mute(request: Request, index: int) -> MuteResponse:
    engine = get_engine(request)
    _track_or_404(engine, index)
    return MuteResponse(index=index, muted=engine.toggle_track_mute(index))


@router.post("/randomize", response_model=RandomizeResponse)
def randomize(request: Request) -> RandomizeResponse:
    return RandomizeResponse(pans=get_engine(request).randomize_parameters())


# ===================================================================
# Taps
# ===================================================================
@router.get("/analysis", response_model=AnalysisResponse)
def analysis(request: Request) -> AnalysisResponse:
    return AnalysisResponse.from_bytes(get_engine(request).get_analysis_snapshot())


@router.post("/recording/start", status_code=status.HTTP_202_ACCEPTED, response_model=TransportStateResponse)
def start_recording(request: Request) -> TransportStateResponse:
    engine = get_engine(request)
    try:
        engine.start_recording()
    except RecordingError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _state(engine)


@router.post(
    "/recording/stop",
    summary="Stop recording and download the capture",
    response_class=Response,
    responses={200: {"content": {"audio/wav": {}}}},
)
def stop_recording(request: Request) -> Response:
    """
    Contract:
    - 200: audio/wav attachment, filename <prefix>-<UTC timestamp>.wav
    - 409: no recording in progress
    """
    engine = get_engine(request)
    try:
        capture = engine.stop_recording()
    except RecordingError as e:
        raise HTTPException(status_code=409, detail=str(e))

    logger.info("Recording handed off: %s (%d bytes)", capture.filename, len(capture.data))
    return Response(
        content=capture.data,
        media_type=capture.media_type,
        headers={"Content-Disposition": f'attachment; filename="{capture.filename}"'},
    )
