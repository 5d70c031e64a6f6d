from __future__ import annotations

import asyncio
import io
import json
from typing import Any

import httpx
import pytest
from PIL import Image

from XRAY.services import providers


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            req = httpx.Request("POST", "https://generativelanguage.googleapis.com/v1beta/models/x")
            resp = httpx.Response(self.status_code, request=req, text=self.text)
            raise httpx.HTTPStatusError("bad status", request=req, response=resp)

    def json(self) -> Any:
        return self._payload


def _gemini_payload(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _xray(size: tuple[int, int] = (64, 48)) -> providers.XrayImage:
    buf = io.BytesIO()
    Image.new("L", size, color=100).save(buf, format="PNG")
    return providers.XrayImage(data=buf.getvalue(), filename="pano.png")


def _fake_client(responses: list[Any], posted: list[dict[str, Any]]):
    class FakeClient:
        def __init__(self, *args, **kwargs) -> None:
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url: str, *, headers: dict[str, str], json: dict[str, Any]):
            posted.append({"url": url, "headers": headers, "json": json})
            item = responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item

    return FakeClient


async def _no_wait(_seconds: float) -> None:
    return None


def test_extract_json_object_takes_first_balanced_block() -> None:
    text = 'Here you go:\n```json\n{"diagnosis": "Caries {D2}", "nested": {"a": 1}}\n```\nand {"second": true}'

    parsed = providers.extract_json_object(text)

    assert parsed == {"diagnosis": "Caries {D2}", "nested": {"a": 1}}


def test_extract_json_object_handles_escaped_quotes() -> None:
    parsed = providers.extract_json_object('{"note": "tooth \\"36\\" }"} trailing')

    assert parsed == {"note": 'tooth "36" }'}


@pytest.mark.parametrize("text", ["no json here", '{"unterminated": 1', "{not json}"])
def test_extract_json_object_rejects_bad_text(text: str) -> None:
    with pytest.raises(ValueError):
        providers.extract_json_object(text)


def test_gemini_unavailable_without_key() -> None:
    assert providers.GeminiProvider("").is_available() is False
    assert providers.GeminiProvider("k").is_available() is True


def test_gemini_attempt_returns_parsed_result(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[dict[str, Any]] = []
    body = {"diagnosis": "Deep caries", "confidence": 91, "severity": "high"}
    responses = [_FakeResponse(200, _gemini_payload("Result:\n" + json.dumps(body)))]
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client(responses, posted))

    provider = providers.GeminiProvider("test-key", model="gemini-1.5-flash")
    result = asyncio.run(provider.attempt(_xray()))

    assert result == body
    assert posted[0]["url"].endswith("/gemini-1.5-flash:generateContent")
    assert posted[0]["headers"]["x-goog-api-key"] == "test-key"
    parts = posted[0]["json"]["contents"][0]["parts"]
    assert "JSON" in parts[0]["text"]
    assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"


def test_gemini_retries_once_on_server_error(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[dict[str, Any]] = []
    responses = [_FakeResponse(503), _FakeResponse(200, _gemini_payload('{"diagnosis": "ok"}'))]
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client(responses, posted))
    monkeypatch.setattr(providers.asyncio, "sleep", _no_wait)

    result = asyncio.run(providers.GeminiProvider("k", max_retries=1).attempt(_xray()))

    assert result == {"diagnosis": "ok"}
    assert len(posted) == 2


def test_gemini_client_error_is_not_retried_and_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[dict[str, Any]] = []
    responses = [_FakeResponse(403, text="forbidden"), _FakeResponse(200, _gemini_payload("{}"))]
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client(responses, posted))

    result = asyncio.run(providers.GeminiProvider("k", max_retries=1).attempt(_xray()))

    assert result is None
    assert len(posted) == 1


def test_gemini_text_without_json_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[dict[str, Any]] = []
    responses = [_FakeResponse(200, _gemini_payload("I cannot analyze this image."))]
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client(responses, posted))

    assert asyncio.run(providers.GeminiProvider("k").attempt(_xray())) is None


def test_gemini_timeout_returns_none(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[dict[str, Any]] = []
    responses: list[Any] = [httpx.TimeoutException("timed out"), httpx.TimeoutException("timed out")]
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client(responses, posted))
    monkeypatch.setattr(providers.asyncio, "sleep", _no_wait)

    assert asyncio.run(providers.GeminiProvider("k", max_retries=1).attempt(_xray())) is None
    assert len(posted) == 2


def test_gemini_total_deadline_bounds_slow_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    class SlowClient:
        def __init__(self, *args, **kwargs) -> None:
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, *_args, **_kwargs):
            await asyncio.sleep(5)

    monkeypatch.setattr(providers.httpx, "AsyncClient", SlowClient)

    result = asyncio.run(providers.GeminiProvider("k", timeout_s=0.05).attempt(_xray()))

    assert result is None


def test_encode_image_downscales_large_images() -> None:
    mime, data = providers._encode_image(_xray((3000, 1500)), max_side=1000)

    import base64

    img = Image.open(io.BytesIO(base64.b64decode(data)))
    assert mime == "image/jpeg"
    assert max(img.size) == 1000


def test_encode_image_passes_through_undecodable_bytes() -> None:
    image = providers.XrayImage(data=b"\x00DICM-ish", filename="scan.dcm")

    mime, data = providers._encode_image(image, max_side=512)

    assert mime == "application/octet-stream"
    assert data


def test_extract_candidate_text_raises_when_empty() -> None:
    with pytest.raises(ValueError, match="text"):
        providers._extract_candidate_text({"candidates": []})


def test_provider_error_meta_branches() -> None:
    assert providers.provider_error_meta(providers.MissingApiKeyError("no key"))["code"] == "missing_api_key"
    assert providers.provider_error_meta(RuntimeError("Missing GEMINI_API_KEY"))["code"] == "unknown"
    assert providers.provider_error_meta(asyncio.TimeoutError())["code"] == "timeout"
    assert providers.provider_error_meta(httpx.RequestError("offline"))["code"] == "network"
    assert providers.provider_error_meta(ValueError("bad schema"))["code"] == "schema"
    assert providers.provider_error_meta(Exception("x"))["code"] == "unknown"

    req = httpx.Request("POST", "https://generativelanguage.googleapis.com/v1beta/models/x")
    resp = httpx.Response(429, request=req, json={"error": {"status": "RESOURCE_EXHAUSTED", "message": "quota"}})
    wrapped = RuntimeError("Gemini call failed")
    wrapped.__cause__ = httpx.HTTPStatusError("bad", request=req, response=resp)
    meta = providers.provider_error_meta(wrapped)
    assert meta == {"http_status": "429", "code": "RESOURCE_EXHAUSTED", "message": "quota"}

    html = httpx.Response(502, request=req, text="<html>gateway</html>")
    meta = providers.provider_error_meta(httpx.HTTPStatusError("bad", request=req, response=html))
    assert meta["code"] == "http_502"
    assert "gateway" in meta["message"]


def test_keyless_gemini_attempt_logs_missing_api_key(monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture) -> None:
    posted: list[dict[str, Any]] = []
    monkeypatch.setattr(providers.httpx, "AsyncClient", _fake_client([], posted))
    provider = providers.GeminiProvider("")

    with caplog.at_level("WARNING"):
        result = asyncio.run(provider.attempt(_xray()))

    assert result is None
    assert posted == []
    assert "missing_api_key" in caplog.text
