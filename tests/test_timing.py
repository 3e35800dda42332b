from __future__ import annotations

import pytest

from core.timing import (
    Duration,
    Meter,
    midi_to_frequency,
    note_to_midi,
    parse_duration,
    parse_position,
    pitch_to_frequency,
)


@pytest.mark.parametrize(
    "value, beats",
    [
        ("0:0:0", 0.0),
        ("0:0:2", 0.5),
        ("0:1:0", 1.0),
        ("1:2:0", 6.0),
        ("3:3:2", 15.5),
        ("2", 4.0),  # numeric string = seconds at 120 bpm
        ("4n", 1.0),
        ("1m", 4.0),
        (None, 0.0),
        ("", 0.0),
        (1.5, 3.0),
    ],
)
def test_parse_position_common_time(value, beats):
    assert parse_position(value, bpm=120) == pytest.approx(beats)


def test_parse_position_follows_meter():
    waltz = Meter(3, 4)
    assert parse_position("1:0:0", waltz) == pytest.approx(3.0)
    assert parse_position("1m", waltz) == pytest.approx(3.0)

    six_eight = Meter(6, 8)
    assert six_eight.beats_per_bar == pytest.approx(3.0)
    assert parse_position("2:0:0", six_eight) == pytest.approx(6.0)


@pytest.mark.parametrize("bad", ["abc", "1:x:0", "1:2:3:4", "0::1", [1, 2]])
def test_parse_position_rejects_garbage(bad):
    with pytest.raises(ValueError):
        parse_position(bad)


def test_parse_duration_notation():
    assert parse_duration("4n").beats == pytest.approx(1.0)
    assert parse_duration("8n").beats == pytest.approx(0.5)
    assert parse_duration("8n.").beats == pytest.approx(0.75)
    assert parse_duration("8t").beats == pytest.approx(1.0 / 3.0)
    assert parse_duration("1m").beats == pytest.approx(4.0)
    assert parse_duration("1m", Meter(3, 4)).beats == pytest.approx(3.0)
    assert parse_duration("0:2:0").beats == pytest.approx(2.0)


def test_parse_duration_seconds():
    d = parse_duration(0.25)
    assert d.seconds == pytest.approx(0.25)
    assert d.beats is None
    assert parse_duration("0.5").seconds == pytest.approx(0.5)


@pytest.mark.parametrize("bad", [0, -1, "0n", "0:0:0", "long", None])
def test_parse_duration_rejects_non_positive(bad):
    with pytest.raises(ValueError):
        parse_duration(bad)


def test_duration_resolves_with_tempo():
    quarter = Duration(beats=1.0)
    assert quarter.to_seconds(120) == pytest.approx(0.5)
    assert quarter.to_seconds(60) == pytest.approx(1.0)
    assert Duration(seconds=0.3).to_seconds(200) == pytest.approx(0.3)


@pytest.mark.parametrize(
    "name, midi",
    [("C4", 60), ("A4", 69), ("F#3", 54), ("Bb2", 46), ("A", 69), ("c-1", 0), ("Ebb4", 62)],
)
def test_note_to_midi(name, midi):
    assert note_to_midi(name) == midi


def test_pitch_to_frequency():
    assert pitch_to_frequency("A4") == pytest.approx(440.0)
    assert pitch_to_frequency("440hz") == pytest.approx(440.0)
    assert pitch_to_frequency(220) == pytest.approx(220.0)
    assert pitch_to_frequency("C2") == pytest.approx(65.406, abs=1e-3)
    assert midi_to_frequency(81) == pytest.approx(880.0)


@pytest.mark.parametrize("bad", ["H2", "", 0, -440, "C#x"])
def test_pitch_to_frequency_rejects(bad):
    with pytest.raises(ValueError):
        pitch_to_frequency(bad)
