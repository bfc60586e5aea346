# FILE: genstudio/services/bootstrap.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from genstudio.core import config
from genstudio.core.database import SessionLocal
from genstudio.services.ai_service import ExternalGenerationClient, OpenAIGenerationClient
from genstudio.services.context_service import ContextBuilder, SqlBusinessProfileStore
from genstudio.services.pipeline_service import GenerationPipeline
from genstudio.services.quota_service import QuotaGuard
from genstudio.services.reconcile_service import StatusReconciler
from genstudio.services.request_store import GenerationRequestStore
from genstudio.services.storage_service import ObjectStorage, S3ObjectStorage
from genstudio.services.template_service import SqlTemplateStore
from genstudio.services.upload_service import ArtifactUploader, ParallelUploadCoordinator
from genstudio.services.usage_ledger import SqlUsageLedger

logger = logging.getLogger("genstudio.bootstrap")


def build_pipeline(
    session_factory: Optional[async_sessionmaker] = None,
    ai_client: Optional[ExternalGenerationClient] = None,
    storage: Optional[ObjectStorage] = None,
    **uploader_options,
) -> GenerationPipeline:
    """Wire the pipeline from configuration. Any collaborator can be swapped in."""
    config.configure_logging()
    session_factory = session_factory or SessionLocal
    ledger = SqlUsageLedger(session_factory)
    store = GenerationRequestStore(session_factory)
    storage = storage or S3ObjectStorage()
    ai_client = ai_client or OpenAIGenerationClient(recorder=ledger)

    image_uploader = ArtifactUploader(storage, bucket=config.IMAGE_BUCKET, prefix="img-gen", **uploader_options)
    caption_uploader = ArtifactUploader(storage, bucket=config.CAPTION_BUCKET, prefix="caption", **uploader_options)
    source_uploader = ArtifactUploader(storage, bucket=config.CAPTION_SOURCE_BUCKET, prefix="source", **uploader_options)

    pipeline = GenerationPipeline(
        quota=QuotaGuard(ledger),
        context_builder=ContextBuilder(SqlBusinessProfileStore(session_factory)),
        ai_client=ai_client,
        store=store,
        templates=SqlTemplateStore(session_factory),
        image_uploads=ParallelUploadCoordinator(image_uploader, store),
        caption_uploads=ParallelUploadCoordinator(caption_uploader, store),
        source_uploader=source_uploader,
        reconciler=StatusReconciler(store),
    )
    logger.info(f"Pipeline ready (images -> {config.IMAGE_BUCKET}, captions -> {config.CAPTION_BUCKET})")
    return pipeline
