from __future__ import annotations


class EngineError(Exception):
    """Base exception for the playback engine."""


class CompositionError(EngineError, ValueError):
    """The composition document is missing or malformed; nothing was loaded."""


class RecordingError(EngineError, RuntimeError):
    """Recorder used out of order (start while active, stop while idle)."""
