# FILE: genstudio/services/request_store.py
"""Persistence for pipeline runs and their artifacts.

Every method opens its own session, so concurrent uploads of one run never
share a transaction. Status writes are guarded UPDATEs: the WHERE clause only
matches rows in a status the target may be entered from, which keeps
terminal runs terminal even under concurrent writers.
"""
import logging
import secrets
import string
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from genstudio.core.errors import IllegalStatusTransition, PersistenceError, RequestNotFound
from genstudio.models._time import utcnow
from genstudio.models.artifact import Artifact
from genstudio.models.generation_request import (
    KIND_CAPTION,
    STATUS_COMPLETED,
    STATUS_FAILED,
    TERMINAL_STATUSES,
    GenerationRequest,
    allowed_sources,
    initial_status,
)
from genstudio.schemas.generation import ArtifactOut, GenerationRequestOut, RawArtifact, TenantStats, UploadResult

logger = logging.getLogger("genstudio.store")

_ALPHABET = string.ascii_lowercase + string.digits


def new_request_id(prefix: str = "req") -> str:
    rand = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"{prefix}_{int(time.time() * 1000)}_{rand}"


class GenerationRequestStore:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self.session_factory() as db:
                yield db
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    # ─────────────────────────────────────────────
    # Runs
    # ─────────────────────────────────────────────

    async def create(self, tenant_id: str, kind: str, request_id: Optional[str] = None, **fields: Any) -> GenerationRequest:
        req = GenerationRequest(
            id=str(uuid.uuid4()),
            request_id=request_id or new_request_id("caption" if kind == KIND_CAPTION else "req"),
            tenant_id=tenant_id,
            kind=kind,
            status=initial_status(kind),
            **fields,
        )
        async with self._session() as db:
            db.add(req)
            await db.commit()
        logger.info(f"Created {kind} run {req.request_id} for {tenant_id} ({req.status})")
        return req

    async def get(self, request_pk: str) -> GenerationRequest:
        async with self._session() as db:
            result = await db.execute(
                select(GenerationRequest)
                .where(GenerationRequest.id == request_pk)
                .options(selectinload(GenerationRequest.artifacts.and_(Artifact.is_deleted.is_(False))))
            )
            req = result.scalar_one_or_none()
        if not req:
            raise RequestNotFound(f"Generation request {request_pk} not found")
        return req

    async def get_by_request_id(self, tenant_id: str, request_id: str) -> GenerationRequestOut:
        async with self._session() as db:
            result = await db.execute(
                select(GenerationRequest)
                .where(GenerationRequest.tenant_id == tenant_id, GenerationRequest.request_id == request_id)
                .options(selectinload(GenerationRequest.artifacts.and_(Artifact.is_deleted.is_(False))))
            )
            req = result.scalar_one_or_none()
        if not req:
            raise RequestNotFound(f"Generation request {request_id} not found")
        return to_out(req)

    async def _current_status(self, request_pk: str) -> Optional[str]:
        async with self._session() as db:
            result = await db.execute(select(GenerationRequest.status).where(GenerationRequest.id == request_pk))
            return result.scalar_one_or_none()

    async def record_stage(self, request_pk: str, **fields: Any) -> None:
        """Write stage output (text, tokens, models) onto a run that is still live."""
        async with self._session() as db:
            result = await db.execute(
                update(GenerationRequest)
                .where(
                    GenerationRequest.id == request_pk,
                    GenerationRequest.status.not_in(TERMINAL_STATUSES),
                )
                .values(**fields, updated_at=utcnow())
            )
            await db.commit()
            matched = result.rowcount
        if matched == 0:
            raise IllegalStatusTransition(request_pk, await self._current_status(request_pk), "<stage write>")

    async def transition(self, request_pk: str, kind: str, target: str, **fields: Any) -> None:
        """Move a run forward to ``target``. Backward or post-terminal moves raise."""
        sources = allowed_sources(kind, target)
        values: Dict[str, Any] = dict(fields, status=target, updated_at=utcnow())
        async with self._session() as db:
            result = await db.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == request_pk, GenerationRequest.status.in_(sources))
                .values(**values)
            )
            await db.commit()
            matched = result.rowcount
        if matched == 0:
            raise IllegalStatusTransition(request_pk, await self._current_status(request_pk), target)
        logger.info(f"Run {request_pk} -> {target}")

    async def mark_failed(self, request_pk: str, kind: str, error_message: str) -> None:
        await self.transition(request_pk, kind, STATUS_FAILED, error_message=error_message[:4000])

    async def finalize(
        self,
        request_pk: str,
        kind: str,
        status: str,
        *,
        error_message: Optional[str],
        failed_artifacts: int,
        generation_units: int,
        total_tokens: int,
    ) -> None:
        if status not in (STATUS_COMPLETED, STATUS_FAILED):
            raise ValueError(f"finalize needs a terminal status, got {status}")
        await self.transition(
            request_pk,
            kind,
            status,
            error_message=error_message,
            failed_artifacts=failed_artifacts,
            generation_units=generation_units,
            total_tokens=total_tokens,
            completed_at=utcnow(),
        )

    # ─────────────────────────────────────────────
    # Artifacts
    # ─────────────────────────────────────────────

    async def add_artifact(
        self,
        request_pk: str,
        ordinal: int,
        upload: UploadResult,
        raw: RawArtifact,
        prompt: Optional[str] = None,
    ) -> str:
        """Insert one artifact and bump ``total_artifacts`` in the same transaction."""
        artifact_id = str(uuid.uuid4())
        async with self._session() as db:
            db.add(Artifact(
                id=artifact_id,
                request_pk=request_pk,
                ordinal=ordinal,
                url=upload.url,
                storage_path=upload.storage_path,
                file_name=upload.file_name,
                content_type=upload.content_type,
                byte_size=upload.byte_size,
                seed=raw.seed,
                generation_time_ms=raw.generation_time_ms,
                prompt=prompt,
                text_content=raw.text_content,
                hashtags=raw.hashtags,
                details=raw.details,
            ))
            await db.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == request_pk)
                .values(total_artifacts=GenerationRequest.total_artifacts + 1, updated_at=utcnow())
            )
            await db.commit()
        return artifact_id

    async def soft_delete_artifact(self, tenant_id: str, artifact_id: str) -> None:
        async with self._session() as db:
            result = await db.execute(
                select(Artifact)
                .join(GenerationRequest, Artifact.request_pk == GenerationRequest.id)
                .where(
                    Artifact.id == artifact_id,
                    Artifact.is_deleted.is_(False),
                    GenerationRequest.tenant_id == tenant_id,
                )
            )
            artifact = result.scalar_one_or_none()
            if not artifact:
                raise RequestNotFound(f"Artifact {artifact_id} not found")

            artifact.is_deleted = True
            await db.execute(
                update(GenerationRequest)
                .where(GenerationRequest.id == artifact.request_pk)
                .values(total_artifacts=GenerationRequest.total_artifacts - 1, updated_at=utcnow())
            )
            await db.commit()
        logger.info(f"Soft-deleted artifact {artifact_id} for {tenant_id}")

    async def tenant_stats(self, tenant_id: str) -> TenantStats:
        async with self._session() as db:
            rows = await db.execute(
                select(GenerationRequest.status, func.count(GenerationRequest.id))
                .where(GenerationRequest.tenant_id == tenant_id)
                .group_by(GenerationRequest.status)
            )
            by_status = {status: int(count) for status, count in rows.all()}

            artifacts = await db.execute(
                select(func.count(Artifact.id))
                .join(GenerationRequest, Artifact.request_pk == GenerationRequest.id)
                .where(GenerationRequest.tenant_id == tenant_id, Artifact.is_deleted.is_(False))
            )
            total_artifacts = int(artifacts.scalar() or 0)

        total = sum(by_status.values())
        completed = by_status.get(STATUS_COMPLETED, 0)
        rate = (completed / total) * 100 if total else 0.0
        return TenantStats(
            total_requests=total,
            completed_requests=completed,
            failed_requests=by_status.get(STATUS_FAILED, 0),
            total_artifacts=total_artifacts,
            success_rate=round(rate, 2),
        )


def to_out(req: GenerationRequest) -> GenerationRequestOut:
    """Serialize a run with its live artifacts in ordinal order."""
    artifacts = sorted(
        (a for a in req.artifacts if not a.is_deleted),
        key=lambda a: a.ordinal,
    )
    out = GenerationRequestOut.model_validate(req, from_attributes=True)
    return out.model_copy(update={"artifacts": [ArtifactOut.model_validate(a) for a in artifacts]})
