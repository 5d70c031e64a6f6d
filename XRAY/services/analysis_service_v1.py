"""Dental X-ray Analysis Service (v1 contract).

Endpoints:
- POST /api/v1/analyze        multipart `image` (required) -> {status, request_id, data: Report}
- GET  /api/v1/analyze/health {status: "healthy", backend: "connected" | "disconnected - using fallback"}
- GET  /api/v1/analyses       recent stored analyses (summaries)
- GET  /health                liveness

Analysis never fails once an image is received: provider outages degrade to
`data.metadata.analysis_source == "fallback"`, never to an error response.

Run (from repo root):
  uvicorn XRAY.services.analysis_service_v1:app --host 0.0.0.0 --port 8000

Quick curl:
  curl -X POST http://127.0.0.1:8000/api/v1/analyze -F "image=@xray.jpg"
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict
from uuid import uuid4

from fastapi import APIRouter, FastAPI, File, Query, UploadFile
from fastapi.responses import JSONResponse

from XRAY.services.orchestrator import AnalysisOrchestrator
from XRAY.shared.report_contract import SCHEMA_VERSION, AnalysisResponse, HealthStatus
from XRAY.shared.settings import load_settings


LOGGER = logging.getLogger(__name__)


def _error(code: str, message: str, status_code: int) -> JSONResponse:
    payload: AnalysisResponse = {
        "status": "error",
        "request_id": str(uuid4()),
        "code": code,
        "message": message,
        "data": None,
    }
    return JSONResponse(status_code=status_code, content=payload)


@lru_cache(maxsize=1)
def _get_orchestrator() -> AnalysisOrchestrator:
    """Build the provider chain + store once per process."""

    return AnalysisOrchestrator.from_settings(load_settings())


router = APIRouter()


@router.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.post("/api/v1/analyze")
async def analyze(image: UploadFile = File(...)) -> JSONResponse:
    request_id = str(uuid4())
    try:
        image_bytes = await image.read()
    except Exception as exc:  # noqa: BLE001 - user input parsing
        return _error("INVALID_IMAGE", f"Invalid image: {exc}", status_code=400)
    if not image_bytes:
        return _error("INVALID_IMAGE", "Invalid image: empty upload", status_code=400)

    filename = image.filename or "upload"
    report = await _get_orchestrator().analyze(image_bytes, filename)

    payload: AnalysisResponse = {
        "status": "success",
        "request_id": request_id,
        "data": report,
    }
    return JSONResponse(status_code=200, content=payload)


# HealthStatus is a typing.TypedDict, which pydantic rejects as a model before 3.12.
@router.get("/api/v1/analyze/health", response_model=None)
async def analyze_health() -> HealthStatus:
    return await _get_orchestrator().health_check()


@router.get("/api/v1/analyses")
def recent_analyses(limit: int = Query(default=20, ge=1, le=100)) -> Any:
    store = _get_orchestrator().store
    if store is None:
        return {"items": []}
    try:
        items = store.list_recent(limit)
    except Exception as exc:  # noqa: BLE001 - storage outage is reported, not raised
        LOGGER.error("Failed to list analyses: %s", exc)
        return _error("STORAGE_UNAVAILABLE", "Analysis history is unavailable", status_code=503)
    return {"items": items}


app = FastAPI(title="Dental X-ray Analysis Service", version=SCHEMA_VERSION)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8000)
