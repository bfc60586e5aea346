# genstudio/core/errors.py
"""Exception taxonomy for the generation pipeline.

Pre-flight errors (quota, template lookup) are raised to the caller before a
run exists. Stage errors abort a run and mark it FAILED. Upload errors are
contained per artifact. Persistence errors at finalization are logged only.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class PipelineError(Exception):
    pass


# ─────────────────────────────────────────────
# Pre-flight
# ─────────────────────────────────────────────

class QuotaExceeded(PipelineError):
    def __init__(
        self,
        message: str,
        required: int = 0,
        remaining: int = 0,
        used: int = 0,
        limit: int = 0,
    ):
        super().__init__(message)
        self.required = required
        self.remaining = remaining
        self.used = used
        self.limit = limit


class NoActiveSubscription(QuotaExceeded):
    def __init__(self, tenant_id: str):
        super().__init__(f"No active subscription found for tenant {tenant_id}")
        self.tenant_id = tenant_id


class TemplateNotFound(PipelineError):
    pass


# ─────────────────────────────────────────────
# Remote AI service
# ─────────────────────────────────────────────

@dataclass(eq=False)
class ExternalServiceError(PipelineError):
    code: str                 # RATE_LIMIT, POLICY, AUTH, TIMEOUT, SERVER, BAD_REQUEST, EMPTY_RESPONSE, UNKNOWN
    message: str              # short caller-facing text
    retryable: bool = False
    stage: Optional[str] = None
    raw: Optional[str] = None  # raw provider error, for logs only

    def __post_init__(self):
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


# ─────────────────────────────────────────────
# Uploads
# ─────────────────────────────────────────────

class UploadError(PipelineError):
    def __init__(self, message: str, ordinal: Optional[int] = None, attempts: int = 0):
        super().__init__(message)
        self.ordinal = ordinal
        self.attempts = attempts


class InvalidArtifact(UploadError):
    """Payload rejected before any storage call was made."""


# ─────────────────────────────────────────────
# Persistence
# ─────────────────────────────────────────────

class PersistenceError(PipelineError):
    pass


class IllegalStatusTransition(PersistenceError):
    def __init__(self, request_pk: str, current: Optional[str], target: str):
        super().__init__(f"Illegal status transition for {request_pk}: {current} -> {target}")
        self.request_pk = request_pk
        self.current = current
        self.target = target


class RequestNotFound(PipelineError):
    pass
