import asyncio
import io

import httpx
import numpy as np
from PIL import Image

import main
from XRAY.services import analysis_service_v1 as analysis
from XRAY.services.orchestrator import AnalysisOrchestrator


async def _request(method: str, path: str, **kwargs):
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost") as client:
        return await client.request(method, path, **kwargs)


def _offline_orchestrator() -> AnalysisOrchestrator:
    return AnalysisOrchestrator([], None, rng_factory=lambda: np.random.default_rng(3))


def test_root_health_is_ok():
    response = asyncio.run(_request("GET", "/health"))

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_analyze_falls_back_when_no_provider_is_configured(monkeypatch):
    monkeypatch.setattr(analysis, "_get_orchestrator", _offline_orchestrator)
    buf = io.BytesIO()
    Image.new("L", (32, 32)).save(buf, format="PNG")

    response = asyncio.run(
        _request("POST", "/api/v1/analyze", files={"image": ("tiny.png", buf.getvalue(), "image/png")})
    )
    payload = response.json()

    assert response.status_code == 200
    assert payload["data"]["metadata"]["analysis_source"] == "fallback"
    assert payload["data"]["metadata"]["image_quality"] == "poor"


def test_root_404_returns_json_payload():
    response = asyncio.run(_request("GET", "/not-found"))

    assert response.status_code == 404
    body = response.json()
    assert body["detail"] == "Not Found"
    assert body["path"].endswith("/not-found")


def test_root_adds_security_headers():
    response = asyncio.run(_request("GET", "/health"))

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cross-Origin-Resource-Policy"] == "same-origin"
    assert "max-age=31536000" in response.headers["Strict-Transport-Security"]
    assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"
