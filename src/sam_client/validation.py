from __future__ import annotations

import re

CREDENTIAL_MIN_LENGTH = 4
CREDENTIAL_PATTERN = r"^[a-zA-Z0-9-_]+$"
DID_KEY_PREFIX = "did:key:"

_RE_CREDENTIAL = re.compile(CREDENTIAL_PATTERN)


def validate_credential(kind: str, value: str) -> str:
    text = value or ""
    if kind not in {"username", "password"}:
        return ""
    if len(text) < CREDENTIAL_MIN_LENGTH:
        return f"{kind}_too_short: min {CREDENTIAL_MIN_LENGTH} chars"
    if not _RE_CREDENTIAL.match(text):
        return f"{kind}_invalid_chars: use letters, digits, - or _"
    return ""


def validate_did_key(value: str) -> str:
    text = (value or "").strip()
    if not text:
        return "did_key_missing: enter a did_key"
    if not text.startswith(DID_KEY_PREFIX) or len(text) == len(DID_KEY_PREFIX):
        return f"did_key_invalid: must start with {DID_KEY_PREFIX}"
    if any(ch.isspace() for ch in text):
        return "did_key_invalid: must not contain whitespace"
    return ""
