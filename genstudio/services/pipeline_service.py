# FILE: genstudio/services/pipeline_service.py
"""
Entry point for generation runs.

Image runs:   quota -> template -> PROCESSING -> analyze -> finalize ->
              GENERATING -> synthesize -> parallel uploads -> reconcile
Caption runs: quota -> ANALYZING_IMAGE -> source upload -> captions ->
              ANALYZING_CAPTIONS -> caption review -> parallel uploads -> reconcile

Quota and template errors are raised before any row exists. Anything that
fails after the row is created and before the fan-out marks the run FAILED
and the FAILED record is returned.
"""
import logging
from typing import Optional

from genstudio.core.errors import ExternalServiceError, PersistenceError
from genstudio.models.generation_request import (
    KIND_CAPTION,
    STATUS_ANALYZING_CAPTIONS,
    STATUS_GENERATING,
    GenerationRequest,
)
from genstudio.schemas.generation import (
    CaptionGenerationInput,
    GenerationRequestOut,
    ImageGenerationInput,
    PipelineInput,
    RawArtifact,
)
from genstudio.services.ai_service import ExternalGenerationClient
from genstudio.services.caption_service import build_caption_artifacts
from genstudio.services.context_service import ContextBuilder
from genstudio.services.prompt_service import fill_template
from genstudio.services.quota_service import QuotaGuard, caption_units, image_units
from genstudio.services.reconcile_service import StatusReconciler
from genstudio.services.request_store import GenerationRequestStore, to_out
from genstudio.services.template_service import TemplateStore
from genstudio.services.upload_service import ArtifactUploader, ParallelUploadCoordinator

logger = logging.getLogger("genstudio.pipeline")


def compose_image_prompt(prompt: str, style: Optional[str] = None, background: Optional[str] = None) -> str:
    parts = [prompt.strip()]
    if style:
        parts.append(f"Style: {style}.")
    if background:
        parts.append(f"Background: {background}.")
    return " ".join(parts)


class GenerationPipeline:
    def __init__(
        self,
        quota: QuotaGuard,
        context_builder: ContextBuilder,
        ai_client: ExternalGenerationClient,
        store: GenerationRequestStore,
        templates: TemplateStore,
        image_uploads: ParallelUploadCoordinator,
        caption_uploads: ParallelUploadCoordinator,
        source_uploader: ArtifactUploader,
        reconciler: StatusReconciler,
    ):
        self.quota = quota
        self.context_builder = context_builder
        self.ai = ai_client
        self.store = store
        self.templates = templates
        self.image_uploads = image_uploads
        self.caption_uploads = caption_uploads
        self.source_uploader = source_uploader
        self.reconciler = reconciler

    async def start_pipeline(self, tenant_id: str, request: PipelineInput) -> GenerationRequestOut:
        if isinstance(request, ImageGenerationInput):
            return await self.run_image(tenant_id, request)
        if isinstance(request, CaptionGenerationInput):
            return await self.run_caption(tenant_id, request)
        raise TypeError(f"Unsupported pipeline input: {type(request).__name__}")

    async def _context(self, tenant_id: str, enabled: bool) -> Optional[str]:
        if not enabled:
            return None
        return await self.context_builder.build_context(tenant_id)

    async def _abort(self, req: GenerationRequest, err: Exception) -> None:
        message = str(err) or type(err).__name__
        if isinstance(err, ExternalServiceError) and err.raw:
            logger.error(f"Run {req.request_id} aborted [{err.code}/{err.stage}]: {err.raw[:500]}")
        else:
            logger.exception(f"Run {req.request_id} aborted: {message}")

        try:
            await self.store.mark_failed(req.id, req.kind, message)
        except PersistenceError as e:
            logger.error(f"Could not mark run {req.request_id} as FAILED: {e}")

    async def _result(self, request_pk: str) -> GenerationRequestOut:
        return to_out(await self.store.get(request_pk))

    # =========================
    # IMAGE RUNS
    # =========================
    async def run_image(self, tenant_id: str, request: ImageGenerationInput) -> GenerationRequestOut:
        await self.quota.check_quota(tenant_id, image_units(request.image_count))

        template = None
        if request.kind == "TEMPLATE":
            template = await self.templates.get_active(request.template_id)
            base_prompt = fill_template(template.prompt_template, request.input_fields)
        else:
            base_prompt = request.prompt
        prompt = compose_image_prompt(base_prompt, request.style, request.background_preference)

        req = await self.store.create(
            tenant_id,
            request.kind,
            template_id=request.template_id if template else None,
            original_prompt=prompt,
            input_fields=request.input_fields or None,
            include_business_info=request.include_business_info,
            options={
                "image_count": request.image_count,
                "aspect_ratio": request.aspect_ratio,
                "style": request.style,
                "background_preference": request.background_preference,
            },
        )
        logger.info(f"Image run {req.request_id}: {request.image_count} images, {request.aspect_ratio}")

        try:
            context = await self._context(tenant_id, request.include_business_info)

            analysis = await self.ai.analyze_and_enhance(
                prompt, context, tenant_id=tenant_id,
                template_context=template.name if template else None,
            )
            await self.store.record_stage(
                req.id,
                enhanced_prompt=analysis.text,
                analysis_text=analysis.analysis,
                analysis_model=analysis.model,
                analysis_input_tokens=analysis.input_tokens,
                analysis_output_tokens=analysis.output_tokens,
                total_tokens=analysis.total_tokens,
            )

            final = await self.ai.finalize(analysis.text, context, tenant_id=tenant_id)
            total_tokens = analysis.total_tokens + final.total_tokens
            await self.store.record_stage(
                req.id,
                final_prompt=final.text,
                refinement_input_tokens=final.input_tokens,
                refinement_output_tokens=final.output_tokens,
                total_tokens=total_tokens,
            )

            await self.store.transition(req.id, req.kind, STATUS_GENERATING, business_context=context)
            synthesis = await self.ai.synthesize(
                final.text, tenant_id=tenant_id,
                count=request.image_count, aspect_ratio=request.aspect_ratio,
            )
            await self.store.record_stage(req.id, generation_model=synthesis.model)
        except Exception as e:
            await self._abort(req, e)
            return await self._result(req.id)

        batch = await self.image_uploads.upload_all(
            synthesis.artifacts, tenant_id, req.id, req.request_id, prompt=final.text,
        )
        await self.reconciler.finalize(
            req.id, req.kind, batch.successful, batch.failed,
            total_tokens=total_tokens,
            generation_units=len(batch.successful),
        )
        return await self._result(req.id)

    # =========================
    # CAPTION RUNS
    # =========================
    async def run_caption(self, tenant_id: str, request: CaptionGenerationInput) -> GenerationRequestOut:
        await self.quota.check_quota(tenant_id, caption_units())

        options = request.model_dump(exclude={"image_bytes"})
        req = await self.store.create(
            tenant_id,
            KIND_CAPTION,
            original_prompt=request.caption_idea,
            include_business_info=request.include_business_info,
            options=options,
        )
        logger.info(f"Caption run {req.request_id}: {request.platform}/{request.language}")

        try:
            source = await self.source_uploader.upload(
                RawArtifact(data=request.image_bytes, content_type=request.image_mime_type),
                tenant_id, req.request_id, 1,
            )
            await self.store.record_stage(req.id, source_image_url=source.url)

            context = await self._context(tenant_id, request.include_business_info)

            drafts = await self.ai.analyze_image_and_caption(
                request.image_bytes, request.image_mime_type, options, context, tenant_id=tenant_id,
            )
            await self.store.transition(
                req.id,
                KIND_CAPTION,
                STATUS_ANALYZING_CAPTIONS,
                analysis_text=drafts.image_analysis,
                analysis_model=drafts.model,
                analysis_input_tokens=drafts.input_tokens,
                analysis_output_tokens=drafts.output_tokens,
                total_tokens=drafts.input_tokens + drafts.output_tokens,
                business_context=context,
            )
            if not drafts.captions:
                raise ExternalServiceError(
                    code="EMPTY_RESPONSE",
                    message="No captions were generated for this image.",
                    stage="caption",
                )

            review = await self.ai.analyze_captions(
                drafts.captions, request.platform, drafts.image_analysis, request.language, tenant_id=tenant_id,
            )
            total_tokens = drafts.input_tokens + drafts.output_tokens + review.input_tokens + review.output_tokens
            await self.store.record_stage(
                req.id,
                generation_model=review.model,
                refinement_input_tokens=review.input_tokens,
                refinement_output_tokens=review.output_tokens,
                total_tokens=total_tokens,
            )

            artifacts = build_caption_artifacts(
                drafts.captions,
                review.analyses,
                use_emojis=request.use_emojis,
                use_hashtags=request.use_hashtags,
                platform=request.platform,
                language=request.language,
                model=drafts.model,
            )
        except Exception as e:
            await self._abort(req, e)
            return await self._result(req.id)

        batch = await self.caption_uploads.upload_all(
            artifacts, tenant_id, req.id, req.request_id, prompt=request.caption_idea,
        )
        await self.reconciler.finalize(
            req.id, KIND_CAPTION, batch.successful, batch.failed,
            total_tokens=total_tokens,
            generation_units=0,
        )
        return await self._result(req.id)
