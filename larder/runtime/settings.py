"""Runtime settings for the ingestion pipeline.

Resolution order (later wins):
    1. Defaults on IngestSettings
    2. ``[ingest]`` table in <data root>/config/larder.toml
    3. LARDER_* environment variables
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from larder.runtime.paths import get_paths

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
ALLOWED_IMAGE_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/heic",
    "image/heif",
)
POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_ATTEMPTS = 60
HIGH_CONFIDENCE_THRESHOLD = 0.8


def load_toml(path: Path) -> dict[str, Any]:
    """Load TOML file and return parsed dict; missing files map to empty dict."""
    if not path.exists():
        return {}

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class IngestSettings:
    """Tunables for upload, polling, phase separation and collaborators."""

    max_upload_bytes: int = MAX_UPLOAD_BYTES
    allowed_image_types: tuple[str, ...] = field(default=ALLOWED_IMAGE_TYPES)
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    max_poll_attempts: int = MAX_POLL_ATTEMPTS
    high_confidence_threshold: float = HIGH_CONFIDENCE_THRESHOLD
    recognition_url: str = "http://localhost:8001"
    inventory_url: str | None = None
    public_base_url: str = "http://localhost:8080"
    owner_id: str = "local"
    api_url: str = "http://localhost:8080"


_ENV_OVERRIDES = {
    "LARDER_MAX_UPLOAD_BYTES": "max_upload_bytes",
    "LARDER_ALLOWED_IMAGE_TYPES": "allowed_image_types",
    "LARDER_POLL_INTERVAL": "poll_interval_seconds",
    "LARDER_MAX_POLL_ATTEMPTS": "max_poll_attempts",
    "LARDER_CONFIDENCE_THRESHOLD": "high_confidence_threshold",
    "LARDER_RECOGNITION_URL": "recognition_url",
    "LARDER_INVENTORY_URL": "inventory_url",
    "LARDER_PUBLIC_URL": "public_base_url",
    "LARDER_OWNER_ID": "owner_id",
    "LARDER_API_URL": "api_url",
}


def _coerce(name: str, raw: Any) -> Any:
    """Convert a TOML/env value to the type declared on IngestSettings."""
    if name == "allowed_image_types":
        if isinstance(raw, str):
            raw = [part for part in raw.split(",")]
        return tuple(str(part).strip().lower() for part in raw if str(part).strip())
    if name in {"max_upload_bytes", "max_poll_attempts"}:
        return int(raw)
    if name in {"poll_interval_seconds", "high_confidence_threshold"}:
        return float(raw)
    if name == "inventory_url":
        value = str(raw).strip()
        return value or None
    return str(raw).strip()


def load_settings(config_path: Path | None = None, environ: dict[str, str] | None = None) -> IngestSettings:
    """Build IngestSettings from defaults, the TOML file and the environment."""
    path = config_path if config_path is not None else get_paths().settings_file
    env = os.environ if environ is None else environ

    overrides: dict[str, Any] = {}
    known = {f.name for f in fields(IngestSettings)}

    table = load_toml(path).get("ingest", {})
    if isinstance(table, dict):
        for key, value in table.items():
            if key in known:
                overrides[key] = _coerce(key, value)

    for env_name, attr in _ENV_OVERRIDES.items():
        if env_name in env:
            overrides[attr] = _coerce(attr, env[env_name])

    settings = replace(IngestSettings(), **overrides)
    if not 0.0 <= settings.high_confidence_threshold <= 1.0:
        raise ValueError(f"high_confidence_threshold must be within [0, 1], got {settings.high_confidence_threshold}")
    if settings.max_poll_attempts < 1:
        raise ValueError("max_poll_attempts must be at least 1")
    return settings


_settings: IngestSettings | None = None


def get_settings() -> IngestSettings:
    """Get the process-wide IngestSettings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
