from __future__ import annotations

import base64
import re
from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from genstudio.core.database import init_models, make_engine, make_sessionmaker
from genstudio.core.errors import ExternalServiceError
from genstudio.models.business_profile import BusinessProfile
from genstudio.models.image_template import ImageTemplate
from genstudio.models._time import utcnow
from genstudio.models.subscription import TenantSubscription
from genstudio.schemas.generation import (
    CaptionAnalysis,
    CaptionAnalysisResult,
    CaptionDraft,
    CaptionDraftResult,
    RawArtifact,
    StageResult,
    SynthesisResult,
)
from genstudio.services.context_service import ContextBuilder, SqlBusinessProfileStore
from genstudio.services.pipeline_service import GenerationPipeline
from genstudio.services.quota_service import QuotaGuard
from genstudio.services.reconcile_service import StatusReconciler
from genstudio.services.request_store import GenerationRequestStore
from genstudio.services.template_service import SqlTemplateStore
from genstudio.services.upload_service import ArtifactUploader, ParallelUploadCoordinator
from genstudio.services.usage_ledger import SqlUsageLedger

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 8
PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")

_ORDINAL = re.compile(r"-(\d+)-\d+\.\w+$")


# ─────────────────────────────────────────────
# Database
# ─────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def store(session_factory):
    return GenerationRequestStore(session_factory)


async def add_subscription(session_factory, tenant_id: str, limit: int, days: int = 30) -> None:
    now = utcnow()
    async with session_factory() as db:
        db.add(TenantSubscription(
            tenant_id=tenant_id,
            plan_slug="test",
            requests_limit=limit,
            current_period_start=now - timedelta(days=1),
            current_period_end=now + timedelta(days=days),
        ))
        await db.commit()


async def add_profile(session_factory, tenant_id: str, **fields: Any) -> None:
    async with session_factory() as db:
        db.add(BusinessProfile(tenant_id=tenant_id, **fields))
        await db.commit()


async def add_template(session_factory, template_id: str, prompt_template: str, **fields: Any) -> None:
    fields.setdefault("name", "Product Shot")
    fields.setdefault("category", "product")
    async with session_factory() as db:
        db.add(ImageTemplate(id=template_id, prompt_template=prompt_template, **fields))
        await db.commit()


# ─────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────

class FakeStorage:
    """In-memory object storage. ``failures`` maps ordinal -> failures before success (-1 = always)."""

    def __init__(self, failures: Optional[Dict[int, int]] = None):
        self.failures = dict(failures or {})
        self.ensure_calls: List[str] = []
        self.put_calls: List[str] = []
        self.objects: Dict[str, bytes] = {}

    async def ensure_bucket(self, name: str) -> None:
        self.ensure_calls.append(name)

    async def put_object(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        self.put_calls.append(path)
        m = _ORDINAL.search(path)
        ordinal = int(m.group(1)) if m else 0
        remaining = self.failures.get(ordinal, 0)
        if remaining:
            if remaining > 0:
                self.failures[ordinal] = remaining - 1
            raise ConnectionError(f"storage unavailable for {path}")
        self.objects[f"{bucket}/{path}"] = data

    def get_public_url(self, bucket: str, path: str) -> str:
        return f"https://storage.test/{bucket}/{path}"


class FakeAIClient:
    def __init__(self, image_count: Optional[int] = None, fail_stage: Optional[str] = None):
        self.image_count = image_count
        self.fail_stage = fail_stage
        self.calls: List[str] = []
        self.contexts: List[Optional[str]] = []

    def _maybe_fail(self, stage: str) -> None:
        self.calls.append(stage)
        if self.fail_stage == stage:
            raise ExternalServiceError(code="SERVER", message=f"{stage} failed", retryable=True, stage=stage)

    async def analyze_and_enhance(self, prompt, context, *, tenant_id, template_context=None):
        self.contexts.append(context)
        self._maybe_fail("analyze")
        return StageResult(text=f"enhanced: {prompt}", analysis="added lighting", input_tokens=10, output_tokens=5, model="text-model")

    async def finalize(self, text, context, *, tenant_id):
        self._maybe_fail("finalize")
        return StageResult(text=f"final: {text}", input_tokens=7, output_tokens=3, model="text-model")

    async def synthesize(self, prompt, *, tenant_id, count, aspect_ratio):
        self._maybe_fail("synthesize")
        n = self.image_count if self.image_count is not None else count
        return SynthesisResult(
            artifacts=[RawArtifact(data=PNG_DATA_URL, seed=f"seed-{i}", generation_time_ms=100) for i in range(n)],
            per_artifact_timing_ms=[100] * n,
            model="image-model",
        )

    async def analyze_image_and_caption(self, image_bytes, mime_type, options, context, *, tenant_id):
        self.contexts.append(context)
        self._maybe_fail("caption")
        return CaptionDraftResult(
            captions=[
                CaptionDraft(text="Fresh bread daily \U0001F35E — come by!", hashtags="#bread #bakery", approach="Storytelling"),
                CaptionDraft(text="Order now – limited batch", hashtags="#sale", approach="Sales"),
                CaptionDraft(text="Sourdough takes 24 hours", hashtags="", approach="Educational"),
            ],
            image_analysis="A loaf of bread on a table",
            input_tokens=20,
            output_tokens=30,
            model="vision-model",
        )

    async def analyze_captions(self, captions, platform, image_analysis, language, *, tenant_id):
        self._maybe_fail("review")
        return CaptionAnalysisResult(
            analyses=[CaptionAnalysis(variation=i + 1, engagement_score=9) for i in range(len(captions))],
            input_tokens=15,
            output_tokens=25,
            model="text-model",
        )


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def ai_client():
    return FakeAIClient()


def build_test_pipeline(session_factory, ai_client, storage, sleep) -> GenerationPipeline:
    ledger = SqlUsageLedger(session_factory)
    store = GenerationRequestStore(session_factory)

    def uploader(bucket: str, prefix: str) -> ArtifactUploader:
        return ArtifactUploader(storage, bucket=bucket, prefix=prefix, sleep=sleep)

    return GenerationPipeline(
        quota=QuotaGuard(ledger),
        context_builder=ContextBuilder(SqlBusinessProfileStore(session_factory)),
        ai_client=ai_client,
        store=store,
        templates=SqlTemplateStore(session_factory),
        image_uploads=ParallelUploadCoordinator(uploader("images", "img-gen"), store),
        caption_uploads=ParallelUploadCoordinator(uploader("captions", "caption"), store),
        source_uploader=uploader("sources", "source"),
        reconciler=StatusReconciler(store),
    )
