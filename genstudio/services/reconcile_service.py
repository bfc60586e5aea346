# FILE: genstudio/services/reconcile_service.py
import logging
from typing import Optional, Sequence

from genstudio.models.generation_request import STATUS_COMPLETED, STATUS_FAILED
from genstudio.schemas.generation import UploadFailure, UploadSuccess
from genstudio.services.request_store import GenerationRequestStore

logger = logging.getLogger("genstudio.reconcile")


def decide_outcome(successful: int, failed: int) -> tuple:
    """(status, error_message) for a finished fan-out."""
    if successful == 0:
        return STATUS_FAILED, f"All uploads failed ({failed} of {failed})"
    if failed:
        return STATUS_COMPLETED, f"Partial success: {failed} uploads failed"
    return STATUS_COMPLETED, None


class StatusReconciler:
    """Writes the terminal status once every artifact of a run has settled."""

    def __init__(self, store: GenerationRequestStore):
        self.store = store

    async def finalize(
        self,
        request_pk: str,
        kind: str,
        successful: Sequence[UploadSuccess],
        failed: Sequence[UploadFailure],
        total_tokens: int = 0,
        generation_units: Optional[int] = None,
    ) -> str:
        status, error_message = decide_outcome(len(successful), len(failed))
        if generation_units is None:
            generation_units = len(successful)

        try:
            await self.store.finalize(
                request_pk,
                kind,
                status,
                error_message=error_message,
                failed_artifacts=len(failed),
                generation_units=generation_units,
                total_tokens=total_tokens,
            )
        except Exception as e:
            # Artifacts are already stored; a lost status write must not fail the caller
            logger.error(f"Failed to finalize run {request_pk} as {status}: {e}")
            return status

        if error_message:
            logger.warning(f"Run {request_pk} finished {status}: {error_message}")
        else:
            logger.info(f"Run {request_pk} finished {status} with {len(successful)} artifacts")
        return status
