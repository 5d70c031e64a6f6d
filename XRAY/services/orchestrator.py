"""Analysis orchestrator: provider fallback chain + normalization + persistence.

Pipeline per request:
  1) chain stage: load image -> Gemini (if available) -> AI backend -> normalize.
     Any unexpected exception in this stage yields "no report".
  2) terminal stage: local synthesis (source = "fallback"), pure in-memory and
     always successful.
Then the report is persisted (awaited, failure logged and swallowed) and
returned. `analyze` therefore never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional, Sequence, Tuple, Union

import numpy as np

from XRAY.services.providers import (
    AnalysisProvider,
    BackendProvider,
    GeminiProvider,
    XrayImage,
    load_image,
)
from XRAY.services.storage import AnalysisStore, SaveOutcome
from XRAY.shared import synthesis
from XRAY.shared.normalize import normalize_report
from XRAY.shared.report_contract import SOURCE_FALLBACK, HealthStatus, RawResult, Report
from XRAY.shared.settings import Settings


LOGGER = logging.getLogger(__name__)

ImageInput = Union[bytes, bytearray, str, Path]


class AnalysisOrchestrator:
    def __init__(
        self,
        providers: Sequence[AnalysisProvider],
        store: Optional[AnalysisStore] = None,
        *,
        backend: Optional[BackendProvider] = None,
        health_timeout_s: float = 5.0,
        rng_factory: Callable[[], np.random.Generator] = np.random.default_rng,
    ) -> None:
        # Order of `providers` is the precedence order.
        self.providers = list(providers)
        self.store = store
        self.backend = backend
        self.health_timeout_s = float(health_timeout_s)
        self.rng_factory = rng_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisOrchestrator":
        gemini = GeminiProvider(
            settings.gemini_api_key,
            model=settings.gemini_model,
            timeout_s=settings.gemini_timeout_s,
            max_retries=settings.gemini_max_retries,
            max_image_side=settings.gemini_max_image_side,
        )
        backend = BackendProvider(settings.backend_url, timeout_s=settings.backend_timeout_s)
        if not gemini.is_available():
            LOGGER.warning("GEMINI_API_KEY not found. Gemini provider will not be available.")
        return cls(
            [gemini, backend],
            AnalysisStore(settings.database_url),
            backend=backend,
            health_timeout_s=settings.health_timeout_s,
        )

    async def _run_chain(self, image: XrayImage) -> Tuple[Optional[RawResult], str]:
        for provider in self.providers:
            if not provider.is_available():
                LOGGER.info("Provider %s unavailable, skipping", provider.name)
                continue
            LOGGER.info("Using %s for analysis of %s", provider.name, image.filename)
            raw = await provider.attempt(image)
            if raw is not None:
                return raw, provider.name
            LOGGER.warning("Provider %s returned no result, falling back", provider.name)
        return None, SOURCE_FALLBACK

    async def _report_from_chain(
        self,
        image: ImageInput,
        filename: str,
        started_at: float,
        rng: np.random.Generator,
    ) -> Tuple[Optional[Report], Optional[XrayImage]]:
        loaded: Optional[XrayImage] = None
        try:
            loaded = load_image(image, filename)
            raw, source = await self._run_chain(loaded)
            if raw is None:
                LOGGER.warning("All providers failed for %s, using fallback analysis", loaded.filename)
                raw = synthesis.synthesize_raw_result(rng)
            report = normalize_report(
                raw,
                source=source,
                filename=loaded.filename,
                started_at=started_at,
                rng=rng,
                image_bytes=loaded.data,
            )
            return report, loaded
        except Exception:  # noqa: BLE001 - terminal synthesis takes over
            LOGGER.exception("Error analyzing X-ray %s", filename)
            return None, loaded

    def synthesize(
        self,
        filename: str,
        started_at: float,
        rng: np.random.Generator,
        image_bytes: Optional[bytes] = None,
    ) -> Report:
        """Terminal stage: local synthesis, independent of every provider."""

        LOGGER.warning("Using enhanced fallback analysis for %s", filename)
        return normalize_report(
            synthesis.synthesize_raw_result(rng),
            source=SOURCE_FALLBACK,
            filename=filename,
            started_at=started_at,
            rng=rng,
            image_bytes=image_bytes,
        )

    async def _persist(self, report: Report, filename: str, file_size: int) -> SaveOutcome:
        if self.store is None:
            return SaveOutcome.failed("no store configured")
        try:
            outcome = await asyncio.to_thread(
                self.store.save, report, filename=filename, file_size=file_size
            )
        except Exception as exc:  # noqa: BLE001 - persistence is best-effort
            outcome = SaveOutcome.failed(str(exc) or exc.__class__.__name__)
        if not outcome.ok:
            LOGGER.error("Failed to save analysis to database: %s", outcome.error)
        return outcome

    async def analyze(self, image: ImageInput, filename: Optional[str] = None) -> Report:
        started_at = time.perf_counter()
        rng = self.rng_factory()
        display_name = filename or (Path(image).name if isinstance(image, (str, Path)) else "upload")
        LOGGER.info("Starting analysis for file: %s", display_name)

        report, loaded = await self._report_from_chain(image, display_name, started_at, rng)
        if report is None:
            report = self.synthesize(display_name, started_at, rng, loaded.data if loaded else None)

        await self._persist(report, report["file"], loaded.size if loaded else 0)
        LOGGER.info(
            "Analysis completed for %s (source=%s)", report["file"], report["metadata"]["analysis_source"]
        )
        return report

    async def health_check(self) -> HealthStatus:
        connected = False
        if self.backend is not None:
            connected = await self.backend.probe(self.health_timeout_s)
        return {
            "status": "healthy",
            "backend": "connected" if connected else "disconnected - using fallback",
        }
