from __future__ import annotations

import re
from typing import Any

_EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b")
_PHONE_RE = re.compile(r"(?<!\d)(?:\+?\d{1,3}[-.\s]?)?(?:\d{2,4}[-.\s]?\d{3,4}[-.\s]?\d{4})(?!\d)")

_BEARER_RE = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*")
_JWT_RE = re.compile(r"\b[A-Za-z0-9\-_]{20,}\.[A-Za-z0-9\-_]{20,}\.[A-Za-z0-9\-_]{20,}\b")
# Supabase service keys and API keys passed in query strings.
_APIKEY_PARAM_RE = re.compile(r"(?i)\bapikey=[^&\s]+")

_LOG_TEXT_MAX = 1200


def mask_contact_details(text: str) -> str:
    if not text:
        return text
    out = _EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    return _PHONE_RE.sub("[REDACTED_PHONE]", out)


def redact_secrets_text(text: str) -> str:
    if not text:
        return text
    out = _BEARER_RE.sub("Bearer [REDACTED_TOKEN]", text)
    out = _JWT_RE.sub("[REDACTED_JWT]", out)
    return _APIKEY_PARAM_RE.sub("apikey=[REDACTED_KEY]", out)


def sanitize_for_log(value: Any) -> Any:
    """Recursively strip tokens and contact details before persisting a log row."""
    if value is None:
        return None
    if isinstance(value, str):
        return redact_secrets_text(mask_contact_details(value))[:_LOG_TEXT_MAX]
    if isinstance(value, (list, tuple)):
        return [sanitize_for_log(v) for v in value]
    if isinstance(value, dict):
        return {str(k)[:128]: sanitize_for_log(v) for k, v in value.items()}
    if isinstance(value, (int, float, bool)):
        return value
    return str(value)[:_LOG_TEXT_MAX]
