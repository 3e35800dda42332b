# app.py
"""
PromptLoop main entry (FastAPI)

- App Factory pattern for testing & packaging
- Lifespan startup: one AudioEngine per process + its output driver
  (AUDIO_OUTPUT=device|headless|none)
- Dev CORS: allow localhost any port (supports credentials)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings
from core.engine import AudioEngine
from core.generation_service import GenerationService
from core.output import build_output
from routers.generation import router as generation_router
from routers.health import router as health_router
from routers.transport import router as transport_router

logger = logging.getLogger("promptloop")


def _is_dev(app_env: str) -> bool:
    v = (app_env or "").strip().lower()
    return v in {"dev", "development", "local"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    s = get_settings()

    engine = AudioEngine(s)
    engine.init()
    driver = build_output(engine, s.audio_output, block_size=s.block_size)
    if driver is not None:
        try:
            driver.start()
        except Exception as e:
            logger.critical("Failed to start audio output (%s): %s", s.audio_output, e)
            engine.dispose()
            raise

    app.state.engine = engine
    app.state.output = driver
    app.state.generation_service = GenerationService(engine)
    logger.info("Service ready (audio_output=%s)", s.audio_output)

    try:
        yield
    finally:
        logger.info("Service shutting down...")
        app.state.generation_service.close()
        if driver is not None:
            driver.stop()
        engine.dispose()
        app.state.engine = None
        app.state.output = None


def create_app() -> FastAPI:
    # logging once (avoid duplicated handlers in reload/test)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

    s = get_settings()
    app = FastAPI(
        title="PromptLoop",
        version="0.1.0",
        description="Prompt -> composition document -> looping synth playback API",
        lifespan=lifespan,
    )

    # expose settings for debugging
    app.state.settings = s

    # ---- CORS ----
    if _is_dev(s.app_env):
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[],
            allow_origin_regex=r"http://(?:localhost|127\.0\.0\.1)(?::\d+)?",
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # ---- Routers ----
    app.include_router(health_router)
    app.include_router(transport_router)
    app.include_router(generation_router)

    @app.get("/", include_in_schema=False)
    def root():
        return {"service": "PromptLoop", "docs_url": "/docs", "health": "/api/v1/health"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    _s = get_settings()
    uvicorn.run("app:app", host=_s.host, port=_s.port, reload=False)
