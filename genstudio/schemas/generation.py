# =========================================================
# FILE: genstudio/schemas/generation.py
# =========================================================

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from genstudio.core.config import DEFAULT_ASPECT_RATIO, DEFAULT_IMAGE_COUNT, MAX_IMAGE_COUNT

ASPECT_RATIOS = {"1:1", "3:4", "4:3", "9:16", "16:9"}
PLATFORMS = {"FACEBOOK", "INSTAGRAM", "TIKTOK"}
TONES = {"PROFESSIONAL", "CASUAL", "FUNNY", "INSPIRATIONAL", "EDUCATIONAL", "PROMOTIONAL"}
CAPTION_LENGTHS = {"SHORT", "MEDIUM", "LONG"}
LANGUAGES = {"EN", "ID"}


def _upper_choice(value: Optional[str], allowed: set, field: str) -> str:
    v = (value or "").upper().strip()
    if v not in allowed:
        raise ValueError(f"{field} must be one of {sorted(allowed)}")
    return v


# ─────────────────────────────────────────────
# PIPELINE INPUTS
# ─────────────────────────────────────────────

class ImageGenerationInput(BaseModel):
    kind: Literal["TEMPLATE", "CUSTOM"] = "CUSTOM"
    prompt: Optional[str] = None
    template_id: Optional[str] = None
    input_fields: Dict[str, str] = Field(default_factory=dict)
    image_count: int = Field(default=DEFAULT_IMAGE_COUNT, ge=1, le=MAX_IMAGE_COUNT)
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    style: Optional[str] = None
    background_preference: Optional[str] = None
    include_business_info: bool = False

    @field_validator("aspect_ratio")
    @classmethod
    def validate_aspect_ratio(cls, v: str):
        v = (v or "").strip()
        if v not in ASPECT_RATIOS:
            raise ValueError(f"aspect_ratio must be one of {sorted(ASPECT_RATIOS)}")
        return v

    @model_validator(mode="after")
    def validate_kind_fields(self):
        if self.kind == "TEMPLATE" and not self.template_id:
            raise ValueError("template_id is required for TEMPLATE requests")
        if self.kind == "CUSTOM" and not (self.prompt or "").strip():
            raise ValueError("prompt is required for CUSTOM requests")
        return self


class CaptionGenerationInput(BaseModel):
    image_bytes: bytes
    image_filename: str = "upload.png"
    image_mime_type: str = "image/png"
    caption_idea: Optional[str] = None
    platform: str = "INSTAGRAM"
    target_audience: Optional[str] = None
    tone: str = "CASUAL"
    caption_length: str = "MEDIUM"
    use_emojis: bool = True
    use_hashtags: bool = True
    language: str = "EN"
    include_business_info: bool = False

    @field_validator("image_bytes")
    @classmethod
    def validate_image_bytes(cls, v: bytes):
        if not v:
            raise ValueError("image_bytes cannot be empty")
        return v

    @field_validator("image_mime_type")
    @classmethod
    def validate_mime(cls, v: str):
        v = (v or "").lower().strip()
        if not v.startswith("image/"):
            raise ValueError("image_mime_type must be an image/* type")
        return v

    @field_validator("platform")
    @classmethod
    def validate_platform(cls, v: str):
        return _upper_choice(v, PLATFORMS, "platform")

    @field_validator("tone")
    @classmethod
    def validate_tone(cls, v: str):
        return _upper_choice(v, TONES, "tone")

    @field_validator("caption_length")
    @classmethod
    def validate_length(cls, v: str):
        return _upper_choice(v, CAPTION_LENGTHS, "caption_length")

    @field_validator("language", mode="before")
    @classmethod
    def validate_language(cls, v: Optional[str]):
        # Missing language falls back to English
        return _upper_choice(v or "EN", LANGUAGES, "language")


PipelineInput = Union[ImageGenerationInput, CaptionGenerationInput]


# ─────────────────────────────────────────────
# STAGE RESULTS (ExternalGenerationClient)
# ─────────────────────────────────────────────

class StageResult(BaseModel):
    text: str
    analysis: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class RawArtifact(BaseModel):
    """One generated output before upload."""
    data: Union[str, bytes]
    content_type: str = "image/png"
    seed: Optional[str] = None
    generation_time_ms: Optional[int] = None
    text_content: Optional[str] = None
    hashtags: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class SynthesisResult(BaseModel):
    artifacts: List[RawArtifact] = Field(default_factory=list)
    per_artifact_timing_ms: List[int] = Field(default_factory=list)
    model: str = ""


class CaptionDraft(BaseModel):
    text: str
    hashtags: str = ""
    character_count: int = 0
    approach: str = ""


class CaptionDraftResult(BaseModel):
    captions: List[CaptionDraft] = Field(default_factory=list)
    image_analysis: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class CaptionAnalysis(BaseModel):
    variation: int = 1
    engagement_score: int = 8
    readability_score: int = 8
    cta_strength: int = 7
    brand_voice_score: int = 8
    trending_potential: int = 8
    emotional_impact: int = 8
    hook_effectiveness: int = 8
    platform_optimization: int = 8
    keyword_relevance: int = 8
    virality_potential: Literal["HIGH", "VERY HIGH"] = "HIGH"
    strengths: List[str] = Field(default_factory=list)
    marketing_impact: str = ""
    why_it_works: str = ""


class CaptionAnalysisResult(BaseModel):
    analyses: List[CaptionAnalysis] = Field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


# ─────────────────────────────────────────────
# UPLOADS
# ─────────────────────────────────────────────

class UploadResult(BaseModel):
    url: str
    file_name: str
    storage_path: str
    byte_size: int
    content_type: str


class UploadSuccess(BaseModel):
    ordinal: int
    artifact_id: str
    upload: UploadResult


class UploadFailure(BaseModel):
    ordinal: int
    error: str


class UploadBatch(BaseModel):
    successful: List[UploadSuccess] = Field(default_factory=list)
    failed: List[UploadFailure] = Field(default_factory=list)


# ─────────────────────────────────────────────
# OUTPUTS
# ─────────────────────────────────────────────

class ArtifactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ordinal: int
    url: str
    file_name: str
    content_type: str
    byte_size: int
    seed: Optional[str] = None
    generation_time_ms: Optional[int] = None
    prompt: Optional[str] = None
    text_content: Optional[str] = None
    hashtags: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime


class GenerationRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_id: str
    tenant_id: str
    kind: str
    status: str
    template_id: Optional[str] = None
    original_prompt: Optional[str] = None
    enhanced_prompt: Optional[str] = None
    analysis_text: Optional[str] = None
    final_prompt: Optional[str] = None
    business_context: Optional[str] = None
    source_image_url: Optional[str] = None
    options: Optional[Dict[str, Any]] = None
    analysis_model: Optional[str] = None
    generation_model: Optional[str] = None
    analysis_input_tokens: Optional[int] = None
    analysis_output_tokens: Optional[int] = None
    refinement_input_tokens: Optional[int] = None
    refinement_output_tokens: Optional[int] = None
    generation_units: int = 0
    total_tokens: Optional[int] = None
    total_artifacts: int = 0
    failed_artifacts: int = 0
    is_partial: bool = False
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    artifacts: List[ArtifactOut] = Field(default_factory=list)


class TenantStats(BaseModel):
    total_requests: int
    completed_requests: int
    failed_requests: int
    total_artifacts: int
    success_rate: float
