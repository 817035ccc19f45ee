"""Keep credentials and message bodies out of log lines."""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

SECRET_ARGS = {"password", "passphrase"}
# Message bodies are logged by size only.
BODY_ARGS = {"message", "value"}

_SECRET_PAIR_RE = re.compile(
    r"([\"']?(?:password|passphrase)[\"']?\s*[:=]\s*[\"']?)([^\"'\s,}&]+)",
    flags=re.IGNORECASE,
)


def redact_text(text: str) -> str:
    """Mask ``password=...`` style fragments inside free text such as exception messages."""

    return _SECRET_PAIR_RE.sub(rf"\1{REDACTED}", str(text))


def _summarize_body(value: Any) -> str:
    if isinstance(value, str):
        return f"<{len(value)} chars>"
    if isinstance(value, list):
        return f"<{len(value)} lines>"
    return "<body>"


def redact_mapping(obj: dict[str, Any]) -> dict[str, Any]:
    """Copy of a command argument mapping that is safe to log."""

    redacted: dict[str, Any] = {}
    for key, value in obj.items():
        name = str(key).lower()
        if name in SECRET_ARGS:
            redacted[key] = REDACTED
        elif name in BODY_ARGS:
            redacted[key] = _summarize_body(value)
        elif isinstance(value, dict):
            redacted[key] = redact_mapping(value)
        elif isinstance(value, list):
            redacted[key] = [redact_mapping(item) if isinstance(item, dict) else item for item in value]
        else:
            redacted[key] = value
    return redacted
