from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from core.composition_models import CompositionDocument
from core.config import Settings, get_settings
from core.errors import CompositionError

logger = logging.getLogger(__name__)


# -----------------------------
# Exceptions (Business-level)
# -----------------------------
class ComposerClientError(Exception):
    """Base exception for the generative collaborator."""


class NetworkError(ComposerClientError):
    """Connection/timeout/DNS issues."""


class HTTPError(ComposerClientError):
    """Non-2xx response from the model endpoint."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ContractError(ComposerClientError):
    """Reply text is empty or is not a usable composition document."""


GENERATION_CONFIG: Dict[str, Any] = {
    "temperature": 0.7,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 8192,
}

SYSTEM_PROMPT = """\
You are a world-class music composer and an expert in synthesizer programming.
Your task is to compose a full song loop based on the user's description.

OUTPUT FORMAT:
Return ONLY a valid JSON object. Do not wrap it in markdown fences.
The JSON must follow this schema:

{
    "title": "Song Title",
    "tempo": 120,
    "timeSignature": [4, 4],
    "key": "C Major",
    "tracks": [
        {
            "name": "Drums",
            "type": "membranesynth",
            "volume": -10,
            "pan": 0,
            "notes": [
                {"pitch": "C2", "duration": "8n", "time": "0:0:0", "velocity": 0.8}
            ],
            "effects": ["reverb", "delay"]
        }
    ]
}

FIELDS:
- tempo: BPM between 60 and 200
- type: one of "fmsynth", "amsynth", "membranesynth", "metalsynth", "monosynth", "polysynth"
- volume: decibels from -60 to 0; pan: -1 (left) to 1 (right)
- pitch: note name (C4, F#3) or frequency; may be null for drums
- duration: "4n", "8n", "16n", "1m" (measure), dotted "8n." or triplet "8t"
- time: "bars:quarters:sixteenths", e.g. "0:0:0", "0:0:2", "1:2:0"
- velocity: 0 to 1

COMPOSITION RULES:
1. Create a FULL loop of exactly 4 bars (bars 0 to 3).
2. Use at least 3-4 tracks: e.g. Bass, Lead, Chords, Drums.
3. Make it musically interesting: syncopation, varying velocities, proper harmony.
4. "membranesynth" suits kicks/toms, "metalsynth" hi-hats, "fmsynth" bass, "polysynth" chords.
5. Keep "time" values in order and inside the 4-bar loop.

USER PROMPT: "{prompt}"
"""


def build_prompt(user_prompt: str) -> str:
    return SYSTEM_PROMPT.replace("{prompt}", user_prompt.strip().replace('"', "'"))


def extract_json_text(text: str) -> str:
    """
    Model replies are often wrapped in ```json fences or chatter.
    Strip the fences and keep the first '{' .. last '}' span.
    """
    clean = text.replace("```json", "").replace("```", "")
    first = clean.find("{")
    last = clean.rfind("}")
    if first != -1 and last > first:
        clean = clean[first:last + 1]
    return clean.strip()


def _reply_text(data: Any) -> Optional[str]:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text.strip() else None


def _error_message(r: httpx.Response) -> str:
    try:
        msg = r.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        msg = None
    return msg or r.text or "Failed to generate music"


class ComposerClient:
    """
    Gemini generateContent client:
    - POST {base_url}/{model}:generateContent?key=...
    - reply text -> CompositionDocument
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gemini-1.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        timeout_s: float = 60.0,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self.http = http or httpx.Client(timeout=httpx.Timeout(timeout_s))

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, *, http: Optional[httpx.Client] = None) -> "ComposerClient":
        s = settings or get_settings()
        return cls(
            api_key=s.gemini_api_key,
            model=s.gemini_model,
            base_url=s.gemini_base_url,
            timeout_s=s.gemini_timeout_s,
            http=http,
        )

    def __enter__(self) -> "ComposerClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_http:
            self.http.close()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/{self.model}:generateContent"

    def generate_text(self, prompt: str) -> str:
        """Raw reply text for a user prompt."""
        if not self.api_key:
            raise ComposerClientError("API key is missing (set GEMINI_API_KEY)")
        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")

        payload = {
            "contents": [{"parts": [{"text": build_prompt(prompt)}]}],
            "generationConfig": GENERATION_CONFIG,
        }
        try:
            r = self.http.post(self.endpoint, params={"key": self.api_key}, json=payload)
        except (httpx.TimeoutException, httpx.NetworkError, httpx.ConnectError) as e:
            raise NetworkError(str(e)) from e

        if r.status_code != 200:
            raise HTTPError(r.status_code, _error_message(r))

        try:
            data = r.json()
        except ValueError as e:
            raise ContractError(f"Invalid JSON in generateContent response: {e}") from e

        text = _reply_text(data)
        if text is None:
            raise ContractError("Model returned an empty response")
        return text

    def generate_document_json(self, prompt: str) -> Dict[str, Any]:
        """Reply parsed as a JSON object (not yet validated as a composition)."""
        clean = extract_json_text(self.generate_text(prompt))
        try:
            data = json.loads(clean)
        except ValueError as e:
            logger.error("❌ [Composer] unparseable reply: %.200s", clean)
            raise ContractError("Model generated invalid JSON, try a different prompt") from e
        if not isinstance(data, dict):
            raise ContractError("Model reply is not a JSON object")
        return data

    def compose(self, prompt: str) -> CompositionDocument:
        data = self.generate_document_json(prompt)
        try:
            doc = CompositionDocument.parse(data)
        except CompositionError as e:
            raise ContractError(f"Model reply is not a usable composition: {e}") from e
        logger.info("✅ [Composer] %r: %d tracks @ %d bpm", doc.title, len(doc.tracks), doc.tempo)
        return doc
