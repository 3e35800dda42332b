# core/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.timing import parse_duration


# Project root: .../promptloop
BASE_DIR = Path(__file__).resolve().parents[1]

AudioOutputMode = Literal["device", "headless", "none"]


class Settings(BaseSettings):
    """
    PromptLoop settings.

    Reads from:
    - environment variables
    - .env in project root

    Goals:
    - sensible defaults for auditioning a generated loop
    - normalize paths
    - clamp nonsense values instead of failing startup
    """

    model_config = SettingsConfigDict(
        env_file=str(BASE_DIR / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ---- Environment / server ----
    app_env: str = Field(default="development", validation_alias="APP_ENV")
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8000, validation_alias="PORT")

    # ---- Paths ----
    output_dir: Path = Field(default=Path("outputs"), validation_alias="OUTPUT_DIR")

    # ---- Audio device / render ----
    sample_rate: int = Field(default=44100, validation_alias="SAMPLE_RATE")
    block_size: int = Field(default=512, validation_alias="BLOCK_SIZE")
    audio_output: AudioOutputMode = Field(default="headless", validation_alias="AUDIO_OUTPUT")

    # ---- Transport / scheduling ----
    lookahead_ms: float = Field(default=100.0, validation_alias="LOOKAHEAD_MS")
    loop_bars: int = Field(default=4, validation_alias="LOOP_BARS")

    # ---- Analyser ----
    analyser_bins: int = Field(default=256, validation_alias="ANALYSER_BINS")
    analyser_smoothing: float = Field(default=0.8, validation_alias="ANALYSER_SMOOTHING")

    # ---- Master bus ----
    master_volume_db: float = Field(default=-10.0, validation_alias="MASTER_VOLUME_DB")
    reverb_decay_s: float = Field(default=2.0, validation_alias="REVERB_DECAY_S")
    reverb_wet: float = Field(default=0.2, validation_alias="REVERB_WET")
    delay_time: str = Field(default="8n", validation_alias="DELAY_TIME")
    delay_feedback: float = Field(default=0.5, validation_alias="DELAY_FEEDBACK")
    delay_wet: float = Field(default=0.2, validation_alias="DELAY_WET")

    # ---- Recording ----
    recording_prefix: str = Field(default="promptloop", validation_alias="RECORDING_PREFIX")

    # ---- Generative collaborator (Gemini) ----
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "API_KEY"),
    )
    gemini_model: str = Field(default="gemini-1.5-flash", validation_alias="GEMINI_MODEL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        validation_alias="GEMINI_BASE_URL",
    )
    gemini_timeout_s: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_S")

    def model_post_init(self, __context) -> None:
        # 1) Normalize paths to absolute, relative to BASE_DIR
        self.output_dir = self._abs_path(self.output_dir)

        # 2) Ensure runtime directories exist
        self.output_dir.mkdir(parents=True, exist_ok=True)

        # 3) Defensive clamps (never fail startup on a bad env value)
        if self.sample_rate < 8000:
            self.sample_rate = 44100
        if self.block_size <= 0:
            self.block_size = 512

        self.lookahead_ms = float(min(max(self.lookahead_ms, 10.0), 1000.0))

        # The loop region is fixed; anything else falls back to 4 bars
        if self.loop_bars <= 0:
            self.loop_bars = 4

        if self.analyser_bins < 16:
            self.analyser_bins = 256
        self.analyser_smoothing = float(min(max(self.analyser_smoothing, 0.0), 0.99))

        self.master_volume_db = float(min(max(self.master_volume_db, -60.0), 0.0))
        if self.reverb_decay_s <= 0:
            self.reverb_decay_s = 2.0
        self.reverb_wet = float(min(max(self.reverb_wet, 0.0), 1.0))
        self.delay_wet = float(min(max(self.delay_wet, 0.0), 1.0))
        # feedback >= 1 would never decay
        self.delay_feedback = float(min(max(self.delay_feedback, 0.0), 0.95))
        try:
            parse_duration(self.delay_time)
        except ValueError:
            self.delay_time = "8n"

        if self.gemini_timeout_s <= 0:
            self.gemini_timeout_s = 60.0

    @staticmethod
    def _abs_path(p: Path) -> Path:
        if p.is_absolute():
            return p
        return (BASE_DIR / p).resolve()

    @property
    def lookahead_s(self) -> float:
        return self.lookahead_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


if __name__ == "__main__":
    # Quick self-check
    s = get_settings()
    print("✅ Settings loaded")
    print(f"📂 BASE_DIR: {BASE_DIR}")
    print(f"📤 OUTPUT_DIR: {s.output_dir}")
    print(f"🎚️ sample_rate: {s.sample_rate} Hz | block: {s.block_size} | output: {s.audio_output}")
    print(f"⏱️ lookahead: {s.lookahead_ms}ms | loop: {s.loop_bars} bars")
    print(f"🔑 Gemini key configured: {bool(s.gemini_api_key)}")
