# FILE: genstudio/services/upload_service.py
import asyncio
import base64
import binascii
import logging
import re
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from genstudio.core import config
from genstudio.core.errors import InvalidArtifact, UploadError
from genstudio.core.fanout import gather_settled
from genstudio.core.retry import RetryExhausted, retry_with_backoff
from genstudio.schemas.generation import RawArtifact, UploadBatch, UploadFailure, UploadResult, UploadSuccess
from genstudio.services.request_store import GenerationRequestStore
from genstudio.services.storage_service import ObjectStorage

logger = logging.getLogger("genstudio.uploads")

_DATA_URL_PREFIX = re.compile(r"^data:[a-z]+/[a-z0-9.+-]+;base64,", re.I)

EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "application/json": "json",
}


def _is_markup(text: str) -> bool:
    t = text.lstrip()
    return t.startswith("<") or "<html" in t[:4096].lower()


def decode_image_payload(data, min_bytes: int = config.MIN_ARTIFACT_BYTES) -> bytes:
    """
    Turn a generated image payload (data URL, bare base64 or raw bytes) into
    bytes. Raises InvalidArtifact for anything that cannot be a real image.
    """
    if isinstance(data, (bytes, bytearray)):
        buf = bytes(data)
        if not buf:
            raise InvalidArtifact("Invalid image data: payload is empty")
        if buf.lstrip()[:1] == b"<" or b"<html" in buf[:4096].lower():
            raise InvalidArtifact("Invalid image data: received markup instead of image bytes")
    else:
        if not data or not isinstance(data, str):
            raise InvalidArtifact("Invalid image data: data is empty or not a string")

        # Error pages coming back where image data was expected
        if _is_markup(data):
            raise InvalidArtifact("Invalid image data: received HTML response instead of image data")

        b64 = _DATA_URL_PREFIX.sub("", data.strip())
        if len(b64) < config.MIN_BASE64_CHARS:
            raise InvalidArtifact("Invalid image data: base64 data is too short or empty")

        try:
            buf = base64.b64decode(b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidArtifact(f"Invalid base64 data: {e}") from e

    if len(buf) < min_bytes:
        raise InvalidArtifact(f"Invalid image data: buffer too small ({len(buf)} bytes)")
    return buf


def build_storage_path(
    tenant_id: str,
    request_id: str,
    ordinal: int,
    extension: str,
    prefix: str = "img-gen",
    now: Optional[datetime] = None,
) -> Tuple[str, str]:
    """Return (path, file_name): <tenant>/<YYYY>/<MM>/<prefix>-<request>-<ordinal>-<ms+ordinal>.<ext>"""
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000) + ordinal
    file_name = f"{prefix}-{request_id}-{ordinal}-{stamp}.{extension}"
    return f"{tenant_id}/{now.year}/{now.month:02d}/{file_name}", file_name


class ArtifactUploader:
    def __init__(
        self,
        storage: ObjectStorage,
        bucket: str = config.IMAGE_BUCKET,
        prefix: str = "img-gen",
        max_attempts: int = config.UPLOAD_MAX_ATTEMPTS,
        base_delay: float = config.UPLOAD_BACKOFF_BASE_SECONDS,
        max_delay: float = config.UPLOAD_BACKOFF_CAP_SECONDS,
        min_bytes: int = config.MIN_ARTIFACT_BYTES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.storage = storage
        self.bucket = bucket
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.min_bytes = min_bytes
        self.sleep = sleep

    def prepare_payload(self, raw: RawArtifact) -> Tuple[bytes, str, str]:
        content_type = (raw.content_type or "application/octet-stream").lower()
        if content_type.startswith("image/"):
            payload = decode_image_payload(raw.data, self.min_bytes)
        else:
            payload = raw.data.encode("utf-8") if isinstance(raw.data, str) else bytes(raw.data)
            if not payload.strip():
                raise InvalidArtifact("Invalid artifact: payload is empty")
        return payload, content_type, EXTENSIONS.get(content_type, "bin")

    async def upload(
        self,
        raw: RawArtifact,
        tenant_id: str,
        request_id: str,
        ordinal: int,
        *,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
    ) -> UploadResult:
        # Validation happens before any network call
        try:
            payload, content_type, ext = self.prepare_payload(raw)
        except InvalidArtifact as e:
            e.ordinal = ordinal
            raise

        bucket = bucket or self.bucket
        path, file_name = build_storage_path(tenant_id, request_id, ordinal, ext, prefix or self.prefix)

        async def _attempt(attempt: int) -> UploadResult:
            logger.info(f"Uploading artifact {ordinal} (attempt {attempt}/{self.max_attempts}): {file_name} ({len(payload)} bytes)")
            if attempt == 1:
                await self.storage.ensure_bucket(bucket)
            await self.storage.put_object(bucket, path, payload, content_type)
            return UploadResult(
                url=self.storage.get_public_url(bucket, path),
                file_name=file_name,
                storage_path=path,
                byte_size=len(payload),
                content_type=content_type,
            )

        try:
            result = await retry_with_backoff(
                _attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self.sleep,
                label=f"upload {file_name}",
            )
        except RetryExhausted as e:
            raise UploadError(
                f"Failed to upload after {e.attempts} attempts: {e.last_error}",
                ordinal=ordinal,
                attempts=e.attempts,
            ) from e.last_error

        logger.info(f"Uploaded artifact {ordinal}: {result.url}")
        return result


class ParallelUploadCoordinator:
    """
    Uploads every artifact of a run at once. Each success is persisted as soon
    as it lands; a failure only affects its own artifact.
    """

    def __init__(self, uploader: ArtifactUploader, store: GenerationRequestStore):
        self.uploader = uploader
        self.store = store

    async def upload_all(
        self,
        raw_artifacts: Sequence[RawArtifact],
        tenant_id: str,
        request_pk: str,
        request_id: str,
        *,
        prompt: Optional[str] = None,
        bucket: Optional[str] = None,
        prefix: Optional[str] = None,
    ) -> UploadBatch:
        logger.info(f"Starting parallel upload of {len(raw_artifacts)} artifacts for {request_id}")
        t0 = time.monotonic()

        async def _one(ordinal: int, raw: RawArtifact) -> UploadSuccess:
            upload = await self.uploader.upload(raw, tenant_id, request_id, ordinal, bucket=bucket, prefix=prefix)
            artifact_id = await self.store.add_artifact(request_pk, ordinal, upload, raw, prompt=prompt)
            return UploadSuccess(ordinal=ordinal, artifact_id=artifact_id, upload=upload)

        settled = await gather_settled([_one(i + 1, raw) for i, raw in enumerate(raw_artifacts)])

        successful: List[UploadSuccess] = []
        failed: List[UploadFailure] = []
        for item in settled:
            ordinal = item.index + 1
            if item.ok:
                successful.append(item.value)
            else:
                logger.error(f"Artifact {ordinal} of {request_id} failed: {item.error}")
                failed.append(UploadFailure(ordinal=ordinal, error=str(item.error) or type(item.error).__name__))

        logger.info(
            f"Upload results for {request_id}: {len(successful)} successful, {len(failed)} failed "
            f"({int((time.monotonic() - t0) * 1000)} ms)"
        )
        return UploadBatch(successful=successful, failed=failed)
