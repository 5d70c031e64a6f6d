"""Service configuration: `XRAY/configs/analysis.yaml` overlaid with env vars."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "configs" / "analysis.yaml"


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    gemini_model: str = "gemini-1.5-flash"
    gemini_timeout_s: float = 30.0
    gemini_max_retries: int = 1
    gemini_max_image_side: int = 1024
    backend_url: str = "http://localhost:5000/predict"
    backend_timeout_s: float = 30.0
    health_timeout_s: float = 5.0
    database_url: str = "sqlite:///./dental_analysis.db"


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except Exception:
        # Minimal deployments may ship without the config file.
        return {}
    return cfg if isinstance(cfg, dict) else {}


def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def _get_gemini_api_key() -> str:
    # Primary: GEMINI_API_KEY. Older deployments set the misspelled GENMINI_API_KEY.
    return (os.getenv("GEMINI_API_KEY") or os.getenv("GENMINI_API_KEY") or "").strip()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return float(default)
    try:
        return float(value)
    except ValueError:
        return float(default)


def load_settings(path: Optional[Path] = None) -> Settings:
    config_path = Path(path or os.getenv("XRAY_CONFIG") or DEFAULT_CONFIG_PATH)
    cfg = _load_yaml(config_path)
    gemini = _section(cfg, "gemini")
    backend = _section(cfg, "ai_backend")
    storage = _section(cfg, "storage")
    defaults = Settings()

    return Settings(
        gemini_api_key=_get_gemini_api_key(),
        gemini_model=os.getenv("GEMINI_MODEL") or str(gemini.get("model", defaults.gemini_model)),
        gemini_timeout_s=_env_float("GEMINI_TIMEOUT_S", gemini.get("timeout_s", defaults.gemini_timeout_s)),
        gemini_max_retries=int(gemini.get("max_retries", defaults.gemini_max_retries)),
        gemini_max_image_side=int(gemini.get("max_image_side", defaults.gemini_max_image_side)),
        backend_url=os.getenv("AI_BACKEND_URL") or str(backend.get("url", defaults.backend_url)),
        backend_timeout_s=_env_float(
            "AI_BACKEND_TIMEOUT_S", backend.get("timeout_s", defaults.backend_timeout_s)
        ),
        health_timeout_s=_env_float(
            "HEALTH_TIMEOUT_S", backend.get("health_timeout_s", defaults.health_timeout_s)
        ),
        database_url=os.getenv("DATABASE_URL") or str(storage.get("database_url", defaults.database_url)),
    )
