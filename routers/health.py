"""
健康检查路由
功能：用于云服务监控存活状态
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, Request

from core.config import get_settings

router = APIRouter(prefix="/api/v1", tags=["Health"])


@router.get("/health")
def health(request: Request) -> Dict[str, Any]:
    """
    健康检查（给前端 / 部署平台 / 监控用）
    - always returns ok=True if API is alive
    - extra diagnostics: engine state, output driver, generator key
    """
    s = get_settings()
    outputs = Path(s.output_dir)

    engine = getattr(request.app.state, "engine", None)
    driver = getattr(request.app.state, "output", None)

    return {
        "ok": True,
        "env": s.app_env,
        "audio": {
            "sample_rate": s.sample_rate,
            "output": s.audio_output,
            "driver_running": bool(driver is not None and driver.running),
        },
        "paths": {
            "output_dir": str(outputs),
        },
        "checks": {
            "output_dir_exists": outputs.exists(),
            "engine_initialized": bool(engine is not None and engine.initialized),
            "composition_loaded": bool(engine is not None and engine.composition is not None),
            "gemini_key_configured": bool(s.gemini_api_key),
        },
    }
