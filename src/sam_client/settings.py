"""Persisted client settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

DEFAULT_SETTINGS_FILE = Path.home() / ".sam_client.json"
DEFAULT_BASE_URL = "http://127.0.0.1:8788"
DEFAULT_LOG_PATH = Path.home() / ".sam_client.log"


@dataclass(frozen=True)
class ClientSettings:
    base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = 30.0
    reconnect_max_s: float = 5.0
    log_path: str = str(DEFAULT_LOG_PATH)


def _write_replacing(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` via a synced sibling file, never leaving a partial file."""

    staging = path.parent / f".{path.name}.partial"
    path.parent.mkdir(parents=True, exist_ok=True)
    with staging.open("w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    os.replace(staging, path)


def load_settings(path: Path | str = DEFAULT_SETTINGS_FILE) -> Dict[str, Any]:
    """Stored settings, or ``{}`` when the file is absent, unreadable or not a JSON object."""

    try:
        data = json.loads(Path(path).expanduser().read_bytes())
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def persist_settings(settings: Dict[str, Any], path: Path | str = DEFAULT_SETTINGS_FILE) -> None:
    _write_replacing(Path(path).expanduser(), json.dumps(settings, indent=2, sort_keys=True) + "\n")


def _positive_float(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def resolve_settings(stored: Dict[str, Any], overrides: Dict[str, Any] | None = None) -> ClientSettings:
    """Merge stored settings with non-empty overrides (e.g. CLI flags)."""

    merged = dict(stored)
    for key, value in (overrides or {}).items():
        if value is not None and value != "":
            merged[key] = value
    defaults = ClientSettings()
    base_url = str(merged.get("base_url") or defaults.base_url).rstrip("/")
    return ClientSettings(
        base_url=base_url,
        request_timeout_s=_positive_float(merged.get("request_timeout_s"), defaults.request_timeout_s),
        reconnect_max_s=_positive_float(merged.get("reconnect_max_s"), defaults.reconnect_max_s),
        log_path=str(merged.get("log_path") or defaults.log_path),
    )
