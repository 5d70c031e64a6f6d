"""Dental X-ray report contract (v1).

This module documents the canonical report shape every analysis path returns,
whichever provider (or none) produced the underlying result.
It is intentionally stdlib-only so it can be imported anywhere without heavy deps.

Provider payloads are untyped (`RawResult`) and are only ever read by
`XRAY.shared.normalize`; everything downstream sees `Report`.
"""

from __future__ import annotations

from pathlib import PurePath
from typing import Any, Dict, List, Literal, Optional, TypedDict


SCHEMA_VERSION = "1.0"

Severity = Literal["low", "medium", "high", "critical"]
ImageQuality = Literal["poor", "fair", "good", "excellent"]
AnalysisSource = Literal["gemini", "ai_backend", "fallback"]

SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
IMAGE_QUALITIES: tuple[str, ...] = ("poor", "fair", "good", "excellent")

SOURCE_GEMINI = "gemini"
SOURCE_AI_BACKEND = "ai_backend"
SOURCE_FALLBACK = "fallback"

CURRENCY = "VND"

# Model version is a function of the source, never of the payload.
MODEL_VERSION_BY_SOURCE: Dict[str, str] = {
    SOURCE_GEMINI: "Gemini-1.5-Flash",
    SOURCE_AI_BACKEND: "DentalAI-v2.1.0",
    SOURCE_FALLBACK: "Fallback-v1.0",
}

# Provider-specific payload; any shape, any key style.
RawResult = Dict[str, Any]


class DetailedFindings(TypedDict):
    teeth_condition: str
    bone_structure: str
    gum_health: str
    root_canals: str
    cavities: List[str]
    periodontal_status: str


class TreatmentPlan(TypedDict):
    immediate: List[str]
    short_term: List[str]
    long_term: List[str]


class EstimatedCost(TypedDict):
    min: int
    max: int
    currency: str


class CostRange(TypedDict):
    min: int
    max: int


class CostBreakdownItem(TypedDict):
    treatment: str
    cost: CostRange
    note: str


class FollowUpVisit(TypedDict):
    type: str
    timeframe: str
    description: str


class Annotation(TypedDict):
    label: str
    x: float
    y: float
    width: float
    height: float
    confidence: float
    description: str


class ReportMetadata(TypedDict):
    analysis_date: str
    processing_time_ms: int
    image_quality: ImageQuality
    ai_model_version: str
    analysis_source: AnalysisSource


class Report(TypedDict):
    """Canonical analysis output. Every key is populated on every path."""

    diagnosis: str
    confidence: float
    file: str
    severity: Severity
    key_findings: List[str]
    detailed_findings: DetailedFindings
    treatment_plan: TreatmentPlan
    recommendations: List[str]
    risk_factors: List[str]
    follow_up_required: bool
    follow_up_schedule: List[FollowUpVisit]
    preventive_measures: List[str]
    estimated_cost: EstimatedCost
    cost_breakdown: List[CostBreakdownItem]
    annotations: List[Annotation]
    metadata: ReportMetadata


class HealthStatus(TypedDict):
    status: str
    backend: str


class AnalysisResponse(TypedDict, total=False):
    status: Literal["success", "error"]
    request_id: str
    data: Optional[Report]
    code: str
    message: str


# Descriptive slots fall back to these fixed "normal / no data" texts.
DEFAULT_FINDINGS: Dict[str, str] = {
    "teeth_condition": "No detailed information available",
    "bone_structure": "Normal bone structure",
    "gum_health": "Normal gum condition",
    "root_canals": "Normal pulp",
    "periodontal_status": "Normal periodontal status",
}

DEFAULT_DIAGNOSIS = "Analysis completed"

MIME_TYPES: Dict[str, str] = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
}


def mime_type_for(filename: str) -> str:
    ext = PurePath(str(filename or "")).suffix.lower().lstrip(".")
    return MIME_TYPES.get(ext, "application/octet-stream")


def model_version_for(source: str) -> str:
    return MODEL_VERSION_BY_SOURCE.get(source, MODEL_VERSION_BY_SOURCE[SOURCE_FALLBACK])


def is_complete(report: Dict[str, Any]) -> bool:
    """Structural totality check used by tests and the persistence layer."""

    required = set(Report.__annotations__.keys())
    if not required.issubset(report.keys()):
        return False
    if any(report[k] is None for k in required):
        return False
    findings = report["detailed_findings"]
    if set(findings.keys()) != set(DetailedFindings.__annotations__.keys()):
        return False
    if not isinstance(findings["cavities"], list):
        return False
    plan = report["treatment_plan"]
    if any(not isinstance(plan.get(k), list) for k in ("immediate", "short_term", "long_term")):
        return False
    cost = report["estimated_cost"]
    if cost["min"] > cost["max"] or cost["currency"] != CURRENCY:
        return False
    if not 0.0 <= float(report["confidence"]) <= 1.0:
        return False
    if report["severity"] not in SEVERITIES:
        return False
    if report["metadata"]["image_quality"] not in IMAGE_QUALITIES:
        return False
    return bool(str(report["diagnosis"]).strip())
