# FILE: genstudio/services/ai_errors.py
from __future__ import annotations

import re
from typing import Any, Optional, Tuple

import openai

from genstudio.core.errors import ExternalServiceError
from genstudio.models.api_call_log import CALL_FAILED, CALL_RATE_LIMITED, CALL_TIMEOUT

# code -> (user-facing message, retryable)
_OUTCOMES = {
    "POLICY": ("AI refused this request due to safety/policy constraints. Please rephrase the request.", False),
    "RATE_LIMIT": ("AI provider is rate-limited or its quota is exceeded. Try again in a moment.", True),
    "TIMEOUT": ("AI request timed out. Try again.", True),
    "AUTH": ("AI authentication failed (API key/permission).", False),
    "SERVER": ("AI service is temporarily unavailable. Try again later.", True),
    "BAD_REQUEST": ("AI request was rejected due to invalid input/parameters.", False),
}

_POLICY_CODES = {"content_policy_violation", "content_filter", "moderation_blocked"}
_POLICY_WORDS = ("safety", "content policy", "violat", "disallowed", "moderation")

# First match wins. Provider 429 messages quote token counts, so rate limits
# are tested before the bare 401/403 auth codes.
_TEXT_RULES: Tuple[Tuple[str, re.Pattern], ...] = (
    ("RATE_LIMIT", re.compile(r"\b429\b|rate limit|too many requests|insufficient_quota|exceeded your current quota", re.I)),
    ("TIMEOUT", re.compile(r"timeout|timed out", re.I)),
    ("AUTH", re.compile(r"\b40[13]\b|unauthori[sz]ed|invalid api key|incorrect api key|api key not configured", re.I)),
    ("SERVER", re.compile(r"\b50[0234]\b|server error|bad gateway|service unavailable", re.I)),
    ("BAD_REQUEST", re.compile(r"\b400\b|bad request|invalid request", re.I)),
)


def _safe_str(x: Any) -> str:
    try:
        return str(x)
    except Exception:
        return "<unprintable>"


def _is_policy(err: Exception, msg: str) -> bool:
    if getattr(err, "code", None) in _POLICY_CODES:
        return True
    m = msg.lower()
    return any(word in m for word in _POLICY_WORDS) or ("content" in m and "not allowed" in m)


def _code_from_sdk(err: Exception) -> Optional[str]:
    """Classify on the OpenAI SDK exception type or HTTP status, if there is one."""
    if isinstance(err, openai.APITimeoutError):
        return "TIMEOUT"
    if isinstance(err, openai.RateLimitError):
        return "RATE_LIMIT"
    if isinstance(err, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return "AUTH"
    if isinstance(err, openai.InternalServerError):
        return "SERVER"
    if isinstance(err, openai.APIConnectionError):
        return "SERVER"
    if isinstance(err, openai.APIStatusError):
        status = err.status_code
        if status == 429:
            return "RATE_LIMIT"
        if status in (401, 403):
            return "AUTH"
        if status == 408:
            return "TIMEOUT"
        if status >= 500:
            return "SERVER"
        if 400 <= status < 500:
            return "BAD_REQUEST"
    return None


def _code_from_text(msg: str) -> Optional[str]:
    for code, pattern in _TEXT_RULES:
        if pattern.search(msg):
            return code
    return None


def normalize_ai_exception(err: Exception, stage: Optional[str] = None) -> ExternalServiceError:
    """Map an SDK or transport exception onto a stable ExternalServiceError."""
    if isinstance(err, ExternalServiceError):
        if stage and not err.stage:
            err.stage = stage
        return err

    msg = _safe_str(err)
    raw = msg[:4000]

    if _is_policy(err, msg):
        code = "POLICY"
    else:
        code = _code_from_sdk(err) or _code_from_text(msg)

    if code is None:
        return ExternalServiceError(
            code="UNKNOWN",
            message=f"AI request failed unexpectedly: {msg[:300]}",
            retryable=True, stage=stage, raw=raw,
        )

    message, retryable = _OUTCOMES[code]
    return ExternalServiceError(code=code, message=message, retryable=retryable, stage=stage, raw=raw)


def ledger_status_for(err: ExternalServiceError) -> str:
    if err.code == "RATE_LIMIT":
        return CALL_RATE_LIMITED
    if err.code == "TIMEOUT":
        return CALL_TIMEOUT
    return CALL_FAILED
