# tests/test_utils.py
from datetime import datetime, timedelta, timezone

import pytest

import core.config as config_module
from core.utils import ensure_dir, output_path, safe_filename, timestamped_filename


@pytest.fixture(autouse=True)
def isolate_dirs(tmp_path, monkeypatch):
    """OUTPUT_DIR 指向 tmp_path，避免污染真实项目目录；settings 是 lru_cache，必须清理"""
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "outputs"))
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Lo-Fi Chill!!", "Lo-Fi_Chill"),
        ("  spaces   everywhere ", "spaces_everywhere"),
        ("../../etc/passwd", "etc_passwd"),
        ("", "untitled"),
        ("!!!", "untitled"),
        ("雨夜", "untitled"),
    ],
)
def test_safe_filename(raw, expected):
    assert safe_filename(raw) == expected


def test_safe_filename_is_truncated():
    assert len(safe_filename("a" * 300)) == 80


def test_timestamped_filename_format():
    now = datetime(2026, 1, 2, 3, 4, 5, 678000, tzinfo=timezone.utc)
    assert timestamped_filename("promptloop", ".wav", now=now) == "promptloop-20260102T030405678Z.wav"


def test_timestamped_filename_converts_to_utc():
    local = datetime(2026, 1, 2, 11, 0, 0, tzinfo=timezone(timedelta(hours=8)))
    assert timestamped_filename("x", ".json", now=local) == "x-20260102T030000000Z.json"


def test_timestamped_filename_sanitizes_prefix():
    name = timestamped_filename("my loop!", ".wav")
    assert name.startswith("my_loop-")
    assert name.endswith("Z.wav")


def test_ensure_dir_creates_nested(tmp_path):
    d = ensure_dir(tmp_path / "a" / "b")
    assert d.is_dir()
    assert ensure_dir(d) == d


def test_output_path_defaults_to_settings(tmp_path):
    p = output_path("song.wav")
    assert p == tmp_path / "outputs" / "song.wav"
    assert p.parent.is_dir()


def test_output_path_explicit_dir(tmp_path):
    assert output_path("x.json", tmp_path / "other") == tmp_path / "other" / "x.json"
