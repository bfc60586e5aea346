import pytest

from genstudio.core import config
from genstudio.schemas.generation import ImageGenerationInput
from genstudio.services.bootstrap import build_pipeline

from conftest import add_subscription


@pytest.mark.asyncio
async def test_wired_pipeline_uses_configured_buckets(session_factory, ai_client, storage, sleeper):
    await add_subscription(session_factory, "tenant-a", limit=-1)
    pipeline = build_pipeline(session_factory, ai_client=ai_client, storage=storage, sleep=sleeper)

    out = await pipeline.start_pipeline("tenant-a", ImageGenerationInput(prompt="tea", image_count=2))

    assert out.status == "COMPLETED"
    assert storage.ensure_calls == [config.IMAGE_BUCKET, config.IMAGE_BUCKET]
    assert all(a.url.startswith(f"https://storage.test/{config.IMAGE_BUCKET}/") for a in out.artifacts)
