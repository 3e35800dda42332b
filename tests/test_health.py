from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

import core.config as config_module
import routers.health as health_module
from app import create_app


@pytest.fixture(autouse=True)
def reset_settings_cache(tmp_path, monkeypatch):
    # 把路径指向 tmp，避免污染真实 outputs
    monkeypatch.setenv("OUTPUT_DIR", str(tmp_path / "outputs"))
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("AUDIO_OUTPUT", "none")
    monkeypatch.setenv("SAMPLE_RATE", "8000")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("API_KEY", raising=False)

    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


@pytest.fixture
def client():
    # 只挂 health router：没有 lifespan，也就没有 engine
    app = FastAPI()
    app.include_router(health_module.router)
    return TestClient(app)


def test_health_ok(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    body = r.json()

    assert body["ok"] is True
    assert body["env"] == "test"
    assert "paths" in body and "checks" in body


def test_health_without_engine(client):
    body = client.get("/api/v1/health").json()
    assert isinstance(body["paths"]["output_dir"], str)
    assert body["checks"]["output_dir_exists"] is True
    assert body["checks"]["engine_initialized"] is False
    assert body["checks"]["composition_loaded"] is False
    assert body["audio"]["driver_running"] is False


def test_health_gemini_key_flag(monkeypatch):
    c = TestClient(_bare_app())
    assert c.get("/api/v1/health").json()["checks"]["gemini_key_configured"] is False

    monkeypatch.setenv("GEMINI_API_KEY", "abc")
    config_module.get_settings.cache_clear()
    assert c.get("/api/v1/health").json()["checks"]["gemini_key_configured"] is True


def test_health_with_full_app():
    with TestClient(create_app()) as c:
        body = c.get("/api/v1/health").json()
        assert body["audio"]["sample_rate"] == 8000
        assert body["audio"]["output"] == "none"
        assert body["checks"]["engine_initialized"] is True
        assert body["checks"]["composition_loaded"] is False


def _bare_app() -> FastAPI:
    app = FastAPI()
    app.include_router(health_module.router)
    return app
