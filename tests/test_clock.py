from __future__ import annotations

import pytest

from core.clock import Clock, TransportState

SR = 8000


@pytest.fixture
def clock() -> Clock:
    return Clock(SR, bpm=120.0, loop_bars=4)


def test_state_machine(clock: Clock):
    assert clock.state == TransportState.stopped
    assert clock.pause() is False  # only meaningful while playing

    assert clock.play() is True
    assert clock.state == TransportState.playing
    assert clock.play() is False

    assert clock.pause() is True
    assert clock.state == TransportState.paused
    assert clock.pause() is False

    assert clock.play() is True
    clock.stop()
    assert clock.state == TransportState.stopped
    assert clock.position == 0.0


def test_position_only_moves_while_playing(clock: Clock):
    clock.advance(SR)
    assert clock.position == 0.0

    clock.play()
    clock.advance(SR)  # 1 s @ 120 bpm
    assert clock.position == pytest.approx(2.0)
    assert clock.elapsed == pytest.approx(2.0)

    clock.pause()
    clock.advance(SR)
    assert clock.position == pytest.approx(2.0)

    clock.play()
    clock.advance(SR)
    assert clock.position == pytest.approx(4.0)


def test_stop_rewinds_from_paused(clock: Clock):
    clock.play()
    clock.advance(SR * 3)
    clock.pause()
    clock.stop()
    assert clock.position == 0.0
    assert clock.elapsed == 0.0


def test_loop_wraps_at_four_bars(clock: Clock):
    assert clock.loop_beats == pytest.approx(16.0)
    clock.set_loop(True)
    clock.play()
    for _ in range(9):
        clock.advance(SR)  # 9 s = 18 beats
    assert clock.position == pytest.approx(2.0)
    assert clock.elapsed == pytest.approx(18.0)


def test_without_loop_position_keeps_growing(clock: Clock):
    clock.play()
    for _ in range(9):
        clock.advance(SR)
    assert clock.position == pytest.approx(18.0)


def test_enabling_loop_late_wraps_immediately(clock: Clock):
    clock.play()
    for _ in range(9):
        clock.advance(SR)
    clock.set_loop(True)
    assert clock.position == pytest.approx(2.0)


def test_position_bbs(clock: Clock):
    clock.play()
    clock.advance(SR * 3)  # 6 beats
    assert clock.position_bbs() == "1:2:0"
    clock.advance(SR // 8)  # +0.25 beat = one sixteenth
    assert clock.position_bbs() == "1:2:1"


def test_tempo_ramp_is_linear_over_one_second(clock: Clock):
    clock.set_tempo(180.0)
    assert clock.bpm == 120.0
    assert clock.target_bpm == 180.0

    # area under a linear 120 -> 180 ramp over 1 s = 150 bpm average
    assert clock.beats_in(1.0) == pytest.approx(2.5)
    assert clock.beats_in(2.0) == pytest.approx(2.5 + 3.0)

    clock.advance(SR // 2)
    assert clock.bpm == pytest.approx(150.0)
    clock.advance(SR // 2)
    assert clock.bpm == pytest.approx(180.0)
    assert clock.target_bpm == 180.0


def test_tempo_change_keeps_position(clock: Clock):
    clock.play()
    clock.advance(SR)
    clock.set_tempo(60.0)
    assert clock.position == pytest.approx(2.0)
    clock.advance(SR)
    # 120 -> 60 over 1 s averages 90 bpm
    assert clock.position == pytest.approx(2.0 + 1.5)


@pytest.mark.parametrize("seconds", [0.1, 0.5, 0.999, 1.0, 1.7, 3.0])
def test_seconds_for_inverts_beats_in(clock: Clock, seconds: float):
    clock.set_tempo(200.0)
    assert clock.seconds_for(clock.beats_in(seconds)) == pytest.approx(seconds)

    slow = Clock(SR, bpm=180.0)
    slow.set_tempo(60.0)
    assert slow.seconds_for(slow.beats_in(seconds)) == pytest.approx(seconds)


def test_configure_resets_and_sets_meter(clock: Clock):
    clock.play()
    clock.advance(SR)
    clock.set_tempo(90.0)
    clock.configure(140, beats_per_bar=3.0, loop_bars=4)
    assert clock.state == TransportState.stopped
    assert clock.position == 0.0
    assert clock.bpm == 140.0
    assert clock.target_bpm == 140.0
    assert clock.loop_beats == pytest.approx(12.0)
