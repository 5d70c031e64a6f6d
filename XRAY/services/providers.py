"""Provider gateway: uniform adapters over the upstream analysis providers.

Each provider exposes:
- `is_available()`: cheap precondition check (no I/O), consulted before any call.
- `attempt(image)`: returns a raw result dict or `None`. It never raises; every
  transport/timeout/parse failure is logged and collapsed into `None` so the
  orchestrator only sees presence/absence of a usable result.

Providers:
- `GeminiProvider` (primary): Gemini `generateContent` REST call with the image
  inlined; the reply text must contain a JSON object.
- `BackendProvider` (secondary): multipart POST to the in-house inference
  backend (`AI_BACKEND_URL`, default http://localhost:5000/predict).
"""

from __future__ import annotations

import asyncio
import base64
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import httpx
from PIL import Image

from XRAY.shared.report_contract import (
    SOURCE_AI_BACKEND,
    SOURCE_GEMINI,
    RawResult,
    mime_type_for,
)


LOGGER = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


@dataclass(frozen=True)
class XrayImage:
    data: bytes
    filename: str

    @property
    def mime_type(self) -> str:
        return mime_type_for(self.filename)

    @property
    def size(self) -> int:
        return len(self.data)


def load_image(image: Union[bytes, bytearray, str, Path], filename: Optional[str] = None) -> XrayImage:
    """Accept raw bytes or a filesystem path. Raises OSError for unreadable paths."""

    if isinstance(image, (bytes, bytearray)):
        return XrayImage(data=bytes(image), filename=filename or "upload")
    path = Path(image)
    return XrayImage(data=path.read_bytes(), filename=filename or path.name)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first balanced `{...}` block of free-form model output."""

    start = text.find("{")
    if start < 0:
        raise ValueError("No JSON object found in response")

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                parsed = json.loads(text[start : idx + 1])
                if not isinstance(parsed, dict):
                    raise ValueError("Response JSON must be an object")
                return parsed
    raise ValueError("Unbalanced JSON object in response")


def _extract_error_json(resp: httpx.Response) -> dict[str, Any]:
    try:
        payload = resp.json()
    except Exception:  # noqa: BLE001 - best effort only
        return {}
    return payload if isinstance(payload, dict) else {}


class MissingApiKeyError(RuntimeError):
    """Raised when the Gemini provider is called without a key."""


def _gemini_error_body(resp: httpx.Response) -> tuple[str, str]:
    # Google APIs reply with {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED", "message": "..."}}.
    error = _extract_error_json(resp).get("error")
    if not isinstance(error, dict):
        return "", ""
    return str(error.get("status") or "").strip(), str(error.get("message") or "").strip()


def _http_error_meta(exc: httpx.HTTPStatusError) -> Dict[str, str]:
    status = exc.response.status_code
    status_name, message = _gemini_error_body(exc.response)
    if not message:
        body = " ".join((exc.response.text or "").split())
        message = body[:200] or "Provider request failed"
    return {"http_status": str(status), "code": status_name or f"http_{status}", "message": message}


def provider_error_meta(exc: BaseException) -> Dict[str, str]:
    """Compact, secret-free summary of a provider failure for logs.

    Shape: {"http_status": "...", "code": "...", "message": "..."}. Wrapped
    failures (``raise ... from exc``) are classified by their cause.
    """

    cause = exc.__cause__ if isinstance(exc, RuntimeError) and exc.__cause__ is not None else exc
    if isinstance(cause, httpx.HTTPStatusError):
        return _http_error_meta(cause)

    if isinstance(cause, MissingApiKeyError):
        code, message = "missing_api_key", "Missing GEMINI_API_KEY"
    elif isinstance(cause, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        code, message = "timeout", "Provider request timed out"
    elif isinstance(cause, httpx.RequestError):
        code, message = "network", cause.__class__.__name__
    elif isinstance(cause, ValueError):
        code, message = "schema", (str(cause).strip() or cause.__class__.__name__)[:200]
    else:
        code, message = "unknown", cause.__class__.__name__
    return {"http_status": "", "code": code, "message": message}


class AnalysisProvider:
    """Base adapter: bounded, exception-free `attempt` around `_analyze`."""

    name = "provider"

    def __init__(self, *, timeout_s: float) -> None:
        self.timeout_s = float(timeout_s)

    def is_available(self) -> bool:
        raise NotImplementedError

    async def _analyze(self, image: XrayImage) -> RawResult:
        raise NotImplementedError

    async def attempt(self, image: XrayImage) -> Optional[RawResult]:
        try:
            return await asyncio.wait_for(self._analyze(image), timeout=self.timeout_s)
        except Exception as exc:  # noqa: BLE001 - failures become "no result"
            LOGGER.warning("Provider %s failed for %s: %s", self.name, image.filename, provider_error_meta(exc))
            return None


GEMINI_INSTRUCTIONS = """You are a dental radiology assistant. Analyze this dental X-ray image.

Return ONLY one JSON object with this structure (no extra text):
{
  "diagnosis": "primary finding",
  "confidence": number from 0 to 100,
  "severity": "low" | "medium" | "high" | "critical",
  "keyFindings": ["finding"],
  "detailedFindings": {
    "teethCondition": "teeth condition",
    "boneStructure": "bone structure",
    "gumHealth": "gum health",
    "pulpCondition": "pulp / root canal condition",
    "cavities": ["cavity description"],
    "periodontalStatus": "periodontal status"
  },
  "recommendations": ["recommendation"],
  "treatmentPlan": {
    "immediate": ["immediate treatment"],
    "shortTerm": ["short-term treatment"],
    "longTerm": ["long-term treatment"]
  },
  "riskFactors": ["risk factor"],
  "estimatedCost": {
    "immediate": {"min": 500000, "max": 1000000},
    "total": {"min": 1000000, "max": 3000000},
    "currency": "VND"
  },
  "followUpSchedule": ["follow-up visit"],
  "preventiveMeasures": ["preventive measure"]
}
"""


def _get_gemini_api_key(api_key: str) -> str:
    if not api_key:
        raise MissingApiKeyError("Missing GEMINI_API_KEY for the Gemini provider")
    return api_key


def _encode_image(image: XrayImage, max_side: int) -> tuple[str, str]:
    """Downscale + JPEG-encode for inline upload; raw bytes if Pillow can't decode."""

    try:
        img = Image.open(io.BytesIO(image.data))
        img.load()
    except Exception:  # noqa: BLE001 - unsupported format, send as-is
        return image.mime_type, base64.b64encode(image.data).decode("ascii")

    img_rgb = img.convert("RGB")
    w, h = img_rgb.size
    scale = min(1.0, float(max_side) / float(max(w, h)))
    if scale < 1.0:
        new_w = max(1, int(round(w * scale)))
        new_h = max(1, int(round(h * scale)))
        img_rgb = img_rgb.resize((new_w, new_h), resample=Image.BICUBIC)

    buf = io.BytesIO()
    img_rgb.save(buf, format="JPEG", quality=90, optimize=True)
    return "image/jpeg", base64.b64encode(buf.getvalue()).decode("ascii")


def _extract_candidate_text(resp_json: dict[str, Any]) -> str:
    candidates = resp_json.get("candidates", [])
    texts: list[str] = []
    if isinstance(candidates, list) and candidates:
        first = candidates[0] if isinstance(candidates[0], dict) else {}
        content = first.get("content", {}) or {}
        for part in content.get("parts", []) or []:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
    text = "".join(texts).strip()
    if not text:
        raise ValueError("Gemini response did not contain text")
    return text


class GeminiProvider(AnalysisProvider):
    name = SOURCE_GEMINI

    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-1.5-flash",
        timeout_s: float = 30.0,
        max_retries: int = 1,
        max_image_side: int = 1024,
    ) -> None:
        super().__init__(timeout_s=timeout_s)
        self.api_key = api_key
        self.model = model
        self.max_retries = max(0, int(max_retries))
        self.max_image_side = int(max_image_side)

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _payload(self, image: XrayImage) -> dict[str, Any]:
        mime_type, data = _encode_image(image, self.max_image_side)
        return {
            "contents": [
                {
                    "parts": [
                        {"text": GEMINI_INSTRUCTIONS},
                        {"inline_data": {"mime_type": mime_type, "data": data}},
                    ]
                }
            ],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 2048},
        }

    async def _analyze(self, image: XrayImage) -> RawResult:
        api_key = _get_gemini_api_key(self.api_key)
        url = f"{GEMINI_BASE_URL}/{self.model}:generateContent"
        headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        payload = self._payload(image)

        last_exc: Optional[Exception] = None
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s)) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    resp = await client.post(url, headers=headers, json=payload)
                    if resp.status_code >= 500 and attempt < self.max_retries:
                        await asyncio.sleep(0.25)
                        continue
                    resp.raise_for_status()
                    text = _extract_candidate_text(resp.json())
                    result = extract_json_object(text)
                    LOGGER.info("Gemini analysis completed for %s", image.filename)
                    return result
                except httpx.HTTPStatusError as exc:
                    # 4xx will not improve on retry.
                    raise RuntimeError("Gemini call failed") from exc
                except Exception as exc:  # noqa: BLE001 - network/parse failures
                    last_exc = exc
                    if attempt < self.max_retries and isinstance(exc, httpx.RequestError):
                        await asyncio.sleep(0.25)
                        continue
                    break

        raise RuntimeError("Gemini call failed") from last_exc


class BackendProvider(AnalysisProvider):
    name = SOURCE_AI_BACKEND

    def __init__(self, url: str, *, timeout_s: float = 30.0) -> None:
        super().__init__(timeout_s=timeout_s)
        self.url = (url or "").strip()

    def is_available(self) -> bool:
        return bool(self.url)

    @property
    def health_url(self) -> str:
        if self.url.endswith("/predict"):
            return self.url[: -len("/predict")] + "/health"
        return self.url.rstrip("/") + "/health"

    async def _analyze(self, image: XrayImage) -> RawResult:
        files = {"file": (image.filename, image.data, image.mime_type)}
        async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_s)) as client:
            resp = await client.post(self.url, files=files)
            resp.raise_for_status()
            payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("AI backend response must be a JSON object")
        LOGGER.info("AI backend analysis completed for %s", image.filename)
        return payload

    async def probe(self, timeout_s: float = 5.0) -> bool:
        """Reachability check against the backend's /health route."""

        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(timeout_s)) as client:
                resp = await asyncio.wait_for(client.get(self.health_url), timeout=timeout_s)
                resp.raise_for_status()
        except Exception as exc:  # noqa: BLE001 - health is reported as data
            LOGGER.warning("AI backend health probe failed: %s", provider_error_meta(exc))
            return False
        return True
