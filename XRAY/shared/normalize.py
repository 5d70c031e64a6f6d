"""Map any raw provider result onto the canonical `Report`.

Rule for every field: take the provider value when it is present and of the
expected type, otherwise a fixed default (descriptive text) or a value from the
severity-conditioned synthesis policies. Provider payloads may use camelCase
(Gemini prompt schema, AI backend) or snake_case (local synthesis).
"""

from __future__ import annotations

import io
import math
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import numpy as np
from PIL import Image

from XRAY.shared import synthesis
from XRAY.shared.report_contract import (
    CURRENCY,
    DEFAULT_DIAGNOSIS,
    DEFAULT_FINDINGS,
    IMAGE_QUALITIES,
    SEVERITIES,
    Annotation,
    CostBreakdownItem,
    DetailedFindings,
    EstimatedCost,
    FollowUpVisit,
    RawResult,
    Report,
    TreatmentPlan,
    model_version_for,
)


_CAMEL_RE = re.compile(r"_([a-z])")

# Alternate provider keys for the same slot (beyond snake/camel variants).
_FINDING_ALIASES: Dict[str, tuple[str, ...]] = {
    "root_canals": ("pulp_condition",),
}


def _camel(key: str) -> str:
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), key)


def _get(raw: Any, key: str, *aliases: str) -> Any:
    """Lenient lookup: snake_case, camelCase, then aliases in both styles."""

    if not isinstance(raw, dict):
        return None
    for name in (key, *aliases):
        for variant in (name, _camel(name)):
            value = raw.get(variant)
            if value is not None:
                return value
    return None


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(x).strip() for x in value if isinstance(x, (str, int, float)) and str(x).strip()]


def _number(value: Any) -> Optional[float]:
    """Finite float or None; NaN and infinities count as missing."""

    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip().rstrip("%"))
        else:
            return None
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def resolve_severity(raw: RawResult, rng: np.random.Generator) -> str:
    value = _get(raw, "severity")
    if isinstance(value, str) and value.strip().lower() in SEVERITIES:
        return value.strip().lower()
    return synthesis.classify_severity(rng)


def normalize_confidence(value: Any) -> Optional[float]:
    """Return a fraction in [0, 1]; values above 1 are read as a 0-100 score."""

    number = _number(value)
    if number is None:
        return None
    if number > 1.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def _detailed_findings(raw: RawResult) -> DetailedFindings:
    block = _get(raw, "detailed_findings")
    slots: Dict[str, Any] = {}
    for slot, default in DEFAULT_FINDINGS.items():
        slots[slot] = _text(_get(block, slot, *_FINDING_ALIASES.get(slot, ()))) or default

    cavities_raw = _get(block, "cavities")
    if isinstance(cavities_raw, str):
        cavities = [cavities_raw.strip()] if cavities_raw.strip() else []
    else:
        cavities = _str_list(cavities_raw) or []
    slots["cavities"] = cavities
    return slots  # type: ignore[return-value]


def _treatment_plan(raw: RawResult) -> TreatmentPlan:
    block = _get(raw, "treatment_plan")
    return {
        "immediate": _str_list(_get(block, "immediate")) or [],
        "short_term": _str_list(_get(block, "short_term")) or [],
        "long_term": _str_list(_get(block, "long_term")) or [],
    }


def _estimated_cost(raw: RawResult, severity: str, rng: np.random.Generator) -> EstimatedCost:
    block = _get(raw, "estimated_cost")
    # Gemini replies with {immediate: {...}, total: {...}}; prefer the total range.
    candidates = [block, _get(block, "total")]
    for candidate in candidates:
        low = _number(_get(candidate, "min"))
        high = _number(_get(candidate, "max"))
        if low is None or high is None or low < 0 or high < 0:
            continue
        low_i, high_i = int(round(low)), int(round(high))
        return {"min": min(low_i, high_i), "max": max(low_i, high_i), "currency": CURRENCY}
    return synthesis.estimate_cost(severity, rng)


def _annotations(raw: RawResult) -> List[Annotation]:
    items = _get(raw, "annotations")
    if not isinstance(items, list):
        return []
    out: List[Annotation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        coords = [_number(item.get(k)) for k in ("x", "y", "width", "height")]
        if any(c is None for c in coords):
            continue
        x, y, width, height = (float(c) for c in coords)  # type: ignore[arg-type]
        if width < 0 or height < 0:
            continue
        conf = normalize_confidence(item.get("confidence"))
        out.append(
            {
                "label": _text(item.get("label")) or "Area of concern",
                "x": x,
                "y": y,
                "width": width,
                "height": height,
                "confidence": conf if conf is not None else 0.0,
                "description": _text(item.get("description")) or "",
            }
        )
    return out


def _follow_up_schedule(raw: RawResult, severity: str) -> List[FollowUpVisit]:
    items = _get(raw, "follow_up_schedule")
    out: List[FollowUpVisit] = []
    if isinstance(items, list):
        for item in items:
            if isinstance(item, str) and item.strip():
                out.append({"type": "Follow-up", "timeframe": "", "description": item.strip()})
            elif isinstance(item, dict):
                visit_type = _text(item.get("type"))
                if visit_type:
                    out.append(
                        {
                            "type": visit_type,
                            "timeframe": _text(item.get("timeframe")) or "",
                            "description": _text(item.get("description")) or "",
                        }
                    )
    return out or synthesis.follow_up_schedule(severity)


def assess_image_quality(image_bytes: Optional[bytes]) -> Optional[str]:
    """Grade the radiograph by its shorter side; None if it cannot be decoded."""

    if not image_bytes:
        return None
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
    except Exception:  # noqa: BLE001 - any decode failure means "unknown"
        return None
    short_side = min(width, height)
    if short_side < 300:
        return "poor"
    if short_side < 600:
        return "fair"
    if short_side < 1200:
        return "good"
    return "excellent"


def _image_quality(raw: RawResult, image_bytes: Optional[bytes], rng: np.random.Generator) -> str:
    declared = _get(_get(raw, "metadata"), "image_quality") or _get(raw, "image_quality")
    if isinstance(declared, str) and declared.strip().lower() in IMAGE_QUALITIES:
        return declared.strip().lower()
    return assess_image_quality(image_bytes) or synthesis.pick_image_quality(rng)


def normalize_report(
    raw: Optional[RawResult],
    *,
    source: str,
    filename: str,
    started_at: float,
    rng: np.random.Generator,
    image_bytes: Optional[bytes] = None,
) -> Report:
    """Produce a total `Report` from a raw result of any shape (or none)."""

    raw = raw if isinstance(raw, dict) else {}
    severity = resolve_severity(raw, rng)

    key_findings = _str_list(_get(raw, "key_findings", "findings")) or synthesis.select_findings(severity, rng)

    confidence = normalize_confidence(_get(raw, "confidence"))
    if confidence is None:
        confidence = synthesis.estimate_confidence(severity, len(key_findings), rng) / 100.0

    recommendations = _str_list(_get(raw, "recommendations")) or synthesis.select_recommendations(severity, rng)
    risk_factors = _str_list(_get(raw, "risk_factors")) or synthesis.select_risk_factors(severity, rng)
    preventive = _str_list(_get(raw, "preventive_measures")) or synthesis.select_preventive_measures(rng)

    follow_up = _get(raw, "follow_up_required")
    follow_up_required = follow_up if isinstance(follow_up, bool) else severity != "low"

    cost_breakdown: List[CostBreakdownItem] = synthesis.select_cost_breakdown(severity, rng)

    processing_ms = max(0, int(round((time.perf_counter() - started_at) * 1000.0)))
    return {
        "diagnosis": _text(_get(raw, "diagnosis")) or DEFAULT_DIAGNOSIS,
        "confidence": round(confidence, 4),
        "file": filename,
        "severity": severity,  # type: ignore[typeddict-item]
        "key_findings": key_findings,
        "detailed_findings": _detailed_findings(raw),
        "treatment_plan": _treatment_plan(raw),
        "recommendations": recommendations,
        "risk_factors": risk_factors,
        "follow_up_required": follow_up_required,
        "follow_up_schedule": _follow_up_schedule(raw, severity),
        "preventive_measures": preventive,
        "estimated_cost": _estimated_cost(raw, severity, rng),
        "cost_breakdown": cost_breakdown,
        "annotations": _annotations(raw),
        "metadata": {
            "analysis_date": datetime.now(timezone.utc).isoformat(),
            "processing_time_ms": processing_ms,
            "image_quality": _image_quality(raw, image_bytes, rng),  # type: ignore[typeddict-item]
            "ai_model_version": model_version_for(source),
            "analysis_source": source,  # type: ignore[typeddict-item]
        },
    }
