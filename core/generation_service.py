from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Optional, Union

from core.composer_client import ComposerClient
from core.composition_models import CompositionDocument
from core.engine import AudioEngine
from core.utils import ensure_dir, safe_filename, timestamped_filename

logger = logging.getLogger("promptloop.generation")

ComposeFn = Callable[[str], CompositionDocument]


class GenerationService:
    """
    Service Layer: prompt -> composition document -> engine.

    特性:
    1) composer 惰性创建: 第一次生成时才按 Settings 构造 ComposerClient
    2) 失败不动引擎: 生成 / 解析失败时，已加载的曲子继续播放
    3) 可测试: 可注入 engine / composer / output_dir
    """

    def __init__(
        self,
        engine: AudioEngine,
        *,
        composer: Optional[ComposeFn] = None,
        output_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        self.engine = engine
        self._composer = composer
        self._client: Optional[ComposerClient] = None
        self.output_dir = Path(output_dir) if output_dir is not None else Path(engine.settings.output_dir)

    def set_composer(self, composer: ComposeFn) -> None:
        """For tests or overrides."""
        self._composer = composer

    def _get_composer(self) -> ComposeFn:
        if self._composer is None:
            self._client = ComposerClient.from_settings(self.engine.settings)
            self._composer = self._client.compose
        return self._composer

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def generate(self, prompt: str) -> CompositionDocument:
        logger.info("🚀 [Generate] prompt: %.80s", prompt)
        return self._get_composer()(prompt)

    def generate_and_load(self, prompt: str, *, autoplay: bool = False) -> CompositionDocument:
        """
        Generate, then replace the loaded composition.
        Any failure before the load leaves the engine untouched.
        """
        doc = self.generate(prompt)
        self.engine.load_composition(doc)
        if autoplay:
            self.engine.play()
        logger.info("✅ [Generate] loaded %r", doc.title)
        return doc

    def save_document(self, doc: CompositionDocument, path: Optional[Union[str, Path]] = None) -> Path:
        """Write the document in wire format; default name <title>-<timestamp>.json under outputs/."""
        if path is None:
            out = ensure_dir(self.output_dir) / timestamped_filename(safe_filename(doc.title), ".json")
        else:
            out = Path(path)
            out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(doc.to_wire(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("💾 [Generate] saved %s", out)
        return out
