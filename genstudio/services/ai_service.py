# FILE: genstudio/services/ai_service.py

import asyncio
import base64
import json
import logging
import math
import re
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from genstudio.core import config
from genstudio.core.errors import ExternalServiceError
from genstudio.models.api_call_log import CALL_SUCCESS
from genstudio.schemas.generation import (
    CaptionAnalysis,
    CaptionAnalysisResult,
    CaptionDraft,
    CaptionDraftResult,
    RawArtifact,
    StageResult,
    SynthesisResult,
)
from genstudio.services.ai_errors import ledger_status_for, normalize_ai_exception
from genstudio.services.prompt_service import (
    build_analysis_system_prompt,
    build_analysis_user_prompt,
    build_caption_analysis_system_prompt,
    build_caption_analysis_user_prompt,
    build_caption_system_prompt,
    build_caption_user_prompt,
    build_final_system_prompt,
    build_final_user_prompt,
    clean_image_prompt,
)
from genstudio.services.usage_ledger import ApiCallRecord, UsageRecorder

logger = logging.getLogger("genstudio.ai")

IMAGE_SIZES = {
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
    "4:3": "1536x1024",
    "16:9": "1536x1024",
}

FALLBACK_CAPTIONS = [
    ("Emotional/Storytelling", "Amazing visual content that captures attention and engages your audience perfectly!",
     "#amazing #content #social #engagement"),
    ("Direct/Sales", "Ready to boost your engagement? This content delivers results you can see!",
     "#boost #results #marketing #success"),
    ("Educational/Informative", "Here's what makes this content work: authentic visual storytelling that connects.",
     "#authentic #storytelling #connection #learn"),
]


class ExternalGenerationClient(Protocol):
    async def analyze_and_enhance(self, prompt: str, context: Optional[str], *, tenant_id: str,
                                  template_context: Optional[str] = None) -> StageResult: ...

    async def finalize(self, text: str, context: Optional[str], *, tenant_id: str) -> StageResult: ...

    async def synthesize(self, prompt: str, *, tenant_id: str, count: int, aspect_ratio: str) -> SynthesisResult: ...

    async def analyze_image_and_caption(self, image_bytes: bytes, mime_type: str, options: Dict[str, Any],
                                        context: Optional[str], *, tenant_id: str) -> CaptionDraftResult: ...

    async def analyze_captions(self, captions: List[CaptionDraft], platform: str, image_analysis: str,
                               language: str, *, tenant_id: str) -> CaptionAnalysisResult: ...


# =========================
# JSON EXTRACTION
# =========================
class InvalidAIJson(Exception):
    pass


def _extract_json(text: str) -> dict:
    if not text:
        raise InvalidAIJson("Empty AI response")

    t = text.strip()

    # 1) direct JSON
    try:
        data = json.loads(t)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    # 2) ```json fenced
    fence = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", t, re.S)
    if fence:
        try:
            return json.loads(fence.group(1))
        except ValueError:
            pass

    # 3) first {...} block
    brace = re.search(r"(\{.*\})", t, re.S)
    if brace:
        try:
            return json.loads(brace.group(1))
        except ValueError:
            pass

    raise InvalidAIJson("Could not extract valid JSON")


# =========================
# HELPERS
# =========================
def estimate_tokens(text: str) -> int:
    # Rough approximation: 1 token ~ 4 characters
    return math.ceil(len(text or "") / 4)


def _usage_tokens(response: Any, prompt_text: str, reply_text: str) -> Tuple[int, int]:
    usage = getattr(response, "usage", None)
    prompt_tokens = getattr(usage, "prompt_tokens", None) if usage is not None else None
    completion_tokens = getattr(usage, "completion_tokens", None) if usage is not None else None
    if isinstance(prompt_tokens, int) and isinstance(completion_tokens, int):
        return prompt_tokens, completion_tokens
    return estimate_tokens(prompt_text), estimate_tokens(reply_text)


def _clamp_score(value: Any, default: int) -> int:
    try:
        v = int(value)
    except (TypeError, ValueError):
        v = default
    return max(7, min(10, v))


def _looks_like_markup(data: str) -> bool:
    return data.lstrip().startswith("<") or "<html" in data[:2048].lower()


class OpenAIGenerationClient:
    """
    Staged calls against the OpenAI API.

    Every call is appended to the usage ledger, successful or not. The SDK is
    blocking, so each call runs in a worker thread.
    """

    def __init__(
        self,
        recorder: UsageRecorder,
        client_factory: Callable[[], Any] = config.get_openai_client,
        analysis_model: str = config.ANALYSIS_MODEL,
        refinement_model: str = config.REFINEMENT_MODEL,
        vision_model: str = config.VISION_MODEL,
        image_model: str = config.IMAGE_MODEL,
        batch_size: int = config.IMAGE_BATCH_SIZE,
    ):
        self.recorder = recorder
        self.client_factory = client_factory
        self.analysis_model = analysis_model
        self.refinement_model = refinement_model
        self.vision_model = vision_model
        self.image_model = image_model
        self.batch_size = batch_size
        self._client = None

    def get_client(self):
        if self._client is None:
            self._client = self.client_factory()
        return self._client

    async def _record(self, **kwargs) -> None:
        await self.recorder.record_call(ApiCallRecord(**kwargs))

    async def _chat(
        self,
        *,
        tenant_id: str,
        endpoint: str,
        model: str,
        system_prompt: str,
        user_content: Any,
        prompt_text: str,
        temperature: float = 0.4,
        extra_request_bytes: int = 0,
    ) -> Tuple[str, int, int]:
        """One chat completion. Returns (reply, input_tokens, output_tokens)."""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]

        def _call():
            return self.get_client().chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                response_format={"type": "json_object"},
            )

        request_size = len(prompt_text.encode("utf-8")) + extra_request_bytes
        t0 = time.monotonic()
        try:
            response = await asyncio.to_thread(_call)
            raw = (response.choices[0].message.content or "").strip()
            if not raw:
                raise ExternalServiceError(code="EMPTY_RESPONSE", message="Empty response from AI service",
                                           retryable=True, stage=endpoint)
        except Exception as e:
            err = normalize_ai_exception(e, stage=endpoint)
            await self._record(
                tenant_id=tenant_id, endpoint=endpoint, model_used=model, status=ledger_status_for(err),
                response_time_ms=int((time.monotonic() - t0) * 1000),
                error_message=err.message, error_code=err.code, request_size=request_size,
            )
            logger.error(f"{endpoint} failed for {tenant_id}: [{err.code}] {err.raw or err.message}")
            if err is e:
                raise
            raise err from e

        input_tokens, output_tokens = _usage_tokens(response, prompt_text, raw)
        await self._record(
            tenant_id=tenant_id, endpoint=endpoint, model_used=model, status=CALL_SUCCESS,
            response_time_ms=int((time.monotonic() - t0) * 1000),
            input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens,
            request_size=request_size, response_size=len(raw.encode("utf-8")),
        )
        return raw, input_tokens, output_tokens

    # =========================
    # IMAGE STAGES
    # =========================
    async def analyze_and_enhance(
        self,
        prompt: str,
        context: Optional[str],
        *,
        tenant_id: str,
        template_context: Optional[str] = None,
    ) -> StageResult:
        system_prompt = build_analysis_system_prompt()
        user_msg = build_analysis_user_prompt(prompt, context, template_context)
        raw, in_t, out_t = await self._chat(
            tenant_id=tenant_id,
            endpoint="image-generator/analyze-prompt",
            model=self.analysis_model,
            system_prompt=system_prompt,
            user_content=user_msg,
            prompt_text=system_prompt + user_msg,
        )

        try:
            data = _extract_json(raw)
        except InvalidAIJson:
            logger.warning("Prompt analysis returned invalid JSON; keeping the original prompt")
            data = {"enhancedPrompt": prompt, "analysis": "Failed to parse enhancement response"}

        return StageResult(
            text=str(data.get("enhancedPrompt") or prompt),
            analysis=str(data.get("analysis") or "Prompt enhanced successfully"),
            input_tokens=in_t,
            output_tokens=out_t,
            model=self.analysis_model,
        )

    async def finalize(self, text: str, context: Optional[str], *, tenant_id: str) -> StageResult:
        system_prompt = build_final_system_prompt()
        user_msg = build_final_user_prompt(text, context)
        raw, in_t, out_t = await self._chat(
            tenant_id=tenant_id,
            endpoint="image-generator/create-final-prompt",
            model=self.refinement_model,
            system_prompt=system_prompt,
            user_content=user_msg,
            prompt_text=system_prompt + user_msg,
            temperature=0.3,
        )

        try:
            final_prompt = str(_extract_json(raw).get("finalPrompt") or "").strip()
        except InvalidAIJson:
            final_prompt = ""

        return StageResult(
            text=final_prompt or text,
            input_tokens=in_t,
            output_tokens=out_t,
            model=self.refinement_model,
        )

    async def synthesize(self, prompt: str, *, tenant_id: str, count: int, aspect_ratio: str) -> SynthesisResult:
        total = min(max(count or config.DEFAULT_IMAGE_COUNT, 1), config.MAX_IMAGE_COUNT)
        clean = clean_image_prompt(prompt)
        size = IMAGE_SIZES.get(aspect_ratio, IMAGE_SIZES[config.DEFAULT_ASPECT_RATIO])
        batches = math.ceil(total / self.batch_size)

        logger.info(f"Generating {total} images ({aspect_ratio}) in {batches} batch(es) for {tenant_id}")

        artifacts: List[RawArtifact] = []
        timings: List[int] = []
        last_error: Optional[ExternalServiceError] = None

        for batch_index in range(batches):
            n = min(self.batch_size, total - batch_index * self.batch_size)

            def _call(n=n):
                return self.get_client().images.generate(model=self.image_model, prompt=clean, n=n, size=size)

            t0 = time.monotonic()
            try:
                response = await asyncio.to_thread(_call)
            except Exception as e:
                last_error = normalize_ai_exception(e, stage="image-generator/generate-images-batch")
                await self._record(
                    tenant_id=tenant_id, endpoint="image-generator/generate-images-batch",
                    model_used=self.image_model, status=ledger_status_for(last_error),
                    response_time_ms=int((time.monotonic() - t0) * 1000),
                    error_message=last_error.message, error_code=last_error.code,
                    request_size=len(clean.encode("utf-8")),
                )
                logger.error(f"Batch {batch_index + 1}/{batches} failed: {last_error.raw or last_error.message}")
                continue

            batch_ms = int((time.monotonic() - t0) * 1000)
            items = list(getattr(response, "data", None) or [])
            if not items:
                logger.warning(f"Batch {batch_index + 1}/{batches} returned no images, skipping")
                continue
            if len(items) < n:
                logger.warning(f"Batch {batch_index + 1}/{batches} partial result: {len(items)}/{n} images")

            per_image_ms = batch_ms // n
            for item in items:
                b64 = getattr(item, "b64_json", None)
                if not isinstance(b64, str) or len(b64) < config.MIN_BASE64_CHARS or _looks_like_markup(b64):
                    logger.warning(f"Batch {batch_index + 1}: invalid image payload skipped")
                    continue

                global_index = len(artifacts)
                artifacts.append(RawArtifact(
                    data=f"data:image/png;base64,{b64}",
                    content_type="image/png",
                    seed=f"{self.image_model}-{int(time.time() * 1000)}-{global_index}",
                    generation_time_ms=per_image_ms,
                ))
                timings.append(per_image_ms)

                # One billable unit per image
                await self._record(
                    tenant_id=tenant_id, endpoint=f"image-generator/generate-image-{global_index + 1}",
                    model_used=self.image_model, status=CALL_SUCCESS, response_time_ms=per_image_ms,
                    input_tokens=0, output_tokens=1, total_tokens=1,
                    request_size=len(clean.encode("utf-8")), response_size=(len(b64) * 3) // 4,
                )

        if not artifacts:
            if last_error is not None:
                raise last_error
            raise ExternalServiceError(
                code="EMPTY_RESPONSE",
                message="No valid images were generated from any batch",
                retryable=True,
                stage="image-generator/generate-images-batch",
            )

        logger.info(f"Generated {len(artifacts)}/{total} images for {tenant_id}")
        return SynthesisResult(artifacts=artifacts, per_artifact_timing_ms=timings, model=self.image_model)

    # =========================
    # CAPTION STAGES
    # =========================
    async def analyze_image_and_caption(
        self,
        image_bytes: bytes,
        mime_type: str,
        options: Dict[str, Any],
        context: Optional[str],
        *,
        tenant_id: str,
    ) -> CaptionDraftResult:
        language = options.get("language") or "EN"
        system_prompt = build_caption_system_prompt(language)
        user_msg = build_caption_user_prompt(options, context)
        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        content = [
            {"type": "text", "text": user_msg},
            {"type": "image_url", "image_url": {"url": data_url}},
        ]

        raw, in_t, out_t = await self._chat(
            tenant_id=tenant_id,
            endpoint="caption-generator/analyze-image-generate-captions",
            model=self.vision_model,
            system_prompt=system_prompt,
            user_content=content,
            prompt_text=system_prompt + user_msg,
            temperature=0.8,
            extra_request_bytes=len(image_bytes),
        )

        use_hashtags = options.get("use_hashtags", True)
        try:
            data = _extract_json(raw)
        except InvalidAIJson:
            logger.error(f"Caption generation returned invalid JSON: {raw[:500]}")
            data = {
                "imageAnalysis": "Image analyzed successfully (parsing fallback)",
                "captions": [
                    {"variation": i + 1, "approach": approach, "text": text,
                     "hashtags": hashtags if use_hashtags else ""}
                    for i, (approach, text, hashtags) in enumerate(FALLBACK_CAPTIONS)
                ],
            }

        captions = []
        for i, cap in enumerate(data.get("captions") or []):
            if not isinstance(cap, dict):
                continue
            text = str(cap.get("text") or "")
            captions.append(CaptionDraft(
                text=text,
                hashtags=str(cap.get("hashtags") or ""),
                character_count=int(cap.get("characterCount") or len(text)),
                approach=str(cap.get("approach") or f"Variation {cap.get('variation') or i + 1}"),
            ))

        return CaptionDraftResult(
            captions=captions,
            image_analysis=str(data.get("imageAnalysis") or "Image analyzed successfully"),
            input_tokens=in_t,
            output_tokens=out_t,
            model=self.vision_model,
        )

    async def analyze_captions(
        self,
        captions: List[CaptionDraft],
        platform: str,
        image_analysis: str,
        language: str,
        *,
        tenant_id: str,
    ) -> CaptionAnalysisResult:
        payload = [
            {"variation": i + 1, "approach": c.approach, "text": c.text, "hashtags": c.hashtags}
            for i, c in enumerate(captions)
        ]
        system_prompt = build_caption_analysis_system_prompt(language)
        user_msg = build_caption_analysis_user_prompt(payload, platform, image_analysis)

        raw, in_t, out_t = await self._chat(
            tenant_id=tenant_id,
            endpoint="caption-generator/analyze-generated-captions",
            model=self.analysis_model,
            system_prompt=system_prompt,
            user_content=user_msg,
            prompt_text=system_prompt + user_msg,
            temperature=0.3,
        )

        try:
            items = _extract_json(raw).get("analyses") or []
        except InvalidAIJson:
            logger.error(f"Caption analysis returned invalid JSON: {raw[:500]}")
            items = []

        by_variation: Dict[int, Dict[str, Any]] = {}
        for i, item in enumerate(items):
            if isinstance(item, dict):
                by_variation[int(item.get("variation") or i + 1)] = item

        analyses = []
        for i in range(len(captions)):
            item = by_variation.get(i + 1, {})
            analyses.append(CaptionAnalysis(
                variation=i + 1,
                engagement_score=_clamp_score(item.get("engagementScore"), 8),
                readability_score=_clamp_score(item.get("readabilityScore"), 8),
                cta_strength=_clamp_score(item.get("ctaStrength"), 7),
                brand_voice_score=_clamp_score(item.get("brandVoiceScore"), 8),
                trending_potential=_clamp_score(item.get("trendingPotential"), 8),
                emotional_impact=_clamp_score(item.get("emotionalImpact"), 8),
                hook_effectiveness=_clamp_score(item.get("hookEffectiveness"), 8),
                platform_optimization=_clamp_score(item.get("platformOptimization"), 8),
                keyword_relevance=_clamp_score(item.get("keywordRelevance"), 8),
                virality_potential="VERY HIGH" if item.get("viralityPotential") == "VERY HIGH" else "HIGH",
                strengths=list(item.get("strengths") or ["Engaging content", "Strong messaging", "Platform-appropriate"]),
                marketing_impact=str(item.get("marketingImpact") or "Strong positive impact expected"),
                why_it_works=str(item.get("whyItWorks") or "Well-crafted caption with good engagement potential"),
            ))

        return CaptionAnalysisResult(analyses=analyses, input_tokens=in_t, output_tokens=out_t, model=self.analysis_model)
