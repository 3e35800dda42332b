from __future__ import annotations

import io

import numpy as np
import pytest
import soundfile as sf

from core.errors import RecordingError
from core.recorder import Recorder

SR = 8000


def test_start_twice_is_an_error():
    rec = Recorder(SR)
    rec.start()
    with pytest.raises(RecordingError):
        rec.start()


def test_stop_without_start_is_an_error():
    with pytest.raises(RecordingError):
        Recorder(SR).stop()


def test_push_while_idle_is_ignored():
    rec = Recorder(SR)
    rec.push(np.ones((128, 2)))
    assert rec.frames == 0
    assert not rec.active


def test_capture_decodes_as_wav():
    rec = Recorder(SR, prefix="loop")
    rec.start()
    for _ in range(4):
        rec.push(np.full((128, 2), 0.25))
    assert rec.frames == 512
    cap = rec.stop()

    assert not rec.active
    assert cap.media_type == "audio/wav"
    assert cap.frames == 512
    assert cap.duration_s == pytest.approx(512 / SR)
    assert cap.filename.startswith("loop-")
    assert cap.filename.endswith(".wav")

    audio, sr = sf.read(io.BytesIO(cap.data))
    assert sr == SR
    assert audio.shape == (512, 2)
    np.testing.assert_allclose(audio, 0.25, atol=1e-3)


def test_empty_capture_is_valid():
    rec = Recorder(SR)
    rec.start()
    cap = rec.stop()
    assert cap.frames == 0
    assert cap.data[:4] == b"RIFF"


def test_discard_drops_capture():
    rec = Recorder(SR)
    rec.start()
    rec.push(np.ones((128, 2)))
    rec.discard()
    assert not rec.active
    with pytest.raises(RecordingError):
        rec.stop()
