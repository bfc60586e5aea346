import base64
import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from genstudio.core.errors import ExternalServiceError
from genstudio.models.api_call_log import CALL_FAILED, CALL_RATE_LIMITED, CALL_SUCCESS
from genstudio.schemas.generation import CaptionDraft
from genstudio.services.ai_errors import ledger_status_for, normalize_ai_exception
from genstudio.services.ai_service import InvalidAIJson, OpenAIGenerationClient, _extract_json

from conftest import PNG_BYTES

B64 = base64.b64encode(PNG_BYTES).decode("ascii")


class RecordingLedger:
    def __init__(self):
        self.records = []

    async def record_call(self, record):
        self.records.append(record)


def _chat_response(content, prompt_tokens=12, completion_tokens=8):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


class FakeOpenAI:
    def __init__(self, replies=None, image_batches=None):
        self.replies = list(replies or [])
        self.image_batches = list(image_batches or [])
        self.image_requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.images = SimpleNamespace(generate=self._generate)

    def _create(self, **kwargs):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return _chat_response(reply)

    def _generate(self, **kwargs):
        self.image_requests.append(kwargs)
        batch = self.image_batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        return SimpleNamespace(data=[SimpleNamespace(b64_json=b) for b in batch])


def _client(fake, ledger, **kwargs):
    return OpenAIGenerationClient(ledger, client_factory=lambda: fake, **kwargs)


def test_extract_json_variants():
    assert _extract_json('{"a": 1}') == {"a": 1}
    assert _extract_json('Here you go:\n```json\n{"a": 2}\n```') == {"a": 2}
    assert _extract_json('prefix {"a": 3} suffix') == {"a": 3}
    with pytest.raises(InvalidAIJson):
        _extract_json("no json here")


@pytest.mark.parametrize(
    "message,code",
    [
        ("Error code: 429 - Rate limit reached", "RATE_LIMIT"),
        ("Error code: 429 - Rate limit reached for gpt-4o. Limit 30000, Used 29500, Requested 1401.", "RATE_LIMIT"),
        ("Error code: 403 - project does not have access to model", "AUTH"),
        ("You exceeded your current quota", "RATE_LIMIT"),
        ("Your request was rejected by the safety system", "POLICY"),
        ("Incorrect API key provided (401)", "AUTH"),
        ("Request timed out", "TIMEOUT"),
        ("502 Bad Gateway", "SERVER"),
        ("something odd", "UNKNOWN"),
    ],
)
def test_normalize_ai_exception(message, code):
    err = normalize_ai_exception(RuntimeError(message), stage="analyze")
    assert err.code == code
    assert err.stage == "analyze"


def _status_error(cls, status, message="failed", body=None):
    request = httpx.Request("POST", "https://api.openai.com/v1/images/generations")
    return cls(message, response=httpx.Response(status, request=request), body=body)


@pytest.mark.parametrize(
    "err,code,retryable",
    [
        (_status_error(openai.RateLimitError, 429, "Limit 30000, Used 29500, Requested 1401."), "RATE_LIMIT", True),
        (_status_error(openai.AuthenticationError, 401), "AUTH", False),
        (_status_error(openai.PermissionDeniedError, 403), "AUTH", False),
        (_status_error(openai.InternalServerError, 503), "SERVER", True),
        (_status_error(openai.BadRequestError, 400, "Invalid size 17x17"), "BAD_REQUEST", False),
        (
            _status_error(openai.BadRequestError, 400, "rejected", body={"code": "content_policy_violation"}),
            "POLICY",
            False,
        ),
        (openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")), "TIMEOUT", True),
    ],
)
def test_normalize_sdk_exceptions(err, code, retryable):
    normalized = normalize_ai_exception(err, stage="synthesize")
    assert normalized.code == code
    assert normalized.retryable is retryable


def test_provider_rate_limit_is_logged_as_rate_limited():
    err = normalize_ai_exception(Exception("Error code: 429 - Rate limit reached. Limit 30000, Used 29500, Requested 1401."))
    assert err.code == "RATE_LIMIT"
    assert err.retryable
    assert ledger_status_for(err) == CALL_RATE_LIMITED


def test_ledger_status_mapping():
    assert ledger_status_for(ExternalServiceError(code="RATE_LIMIT", message="x")) == CALL_RATE_LIMITED
    assert ledger_status_for(ExternalServiceError(code="POLICY", message="x")) == CALL_FAILED


@pytest.mark.asyncio
async def test_analysis_stage_reports_tokens_and_records_success():
    ledger = RecordingLedger()
    fake = FakeOpenAI(replies=[json.dumps({"enhancedPrompt": "better", "analysis": "why"})])

    result = await _client(fake, ledger).analyze_and_enhance("cake", None, tenant_id="t1")

    assert result.text == "better"
    assert (result.input_tokens, result.output_tokens) == (12, 8)
    assert [(r.endpoint, r.status) for r in ledger.records] == [("image-generator/analyze-prompt", CALL_SUCCESS)]


@pytest.mark.asyncio
async def test_failed_call_is_recorded_and_normalized():
    ledger = RecordingLedger()
    fake = FakeOpenAI(replies=[RuntimeError("429 Too Many Requests")])

    with pytest.raises(ExternalServiceError) as exc:
        await _client(fake, ledger).finalize("text", None, tenant_id="t1")

    assert exc.value.code == "RATE_LIMIT"
    assert ledger.records[0].status == CALL_RATE_LIMITED
    assert ledger.records[0].endpoint == "image-generator/create-final-prompt"


@pytest.mark.asyncio
async def test_unparseable_finalize_reply_keeps_input_text():
    fake = FakeOpenAI(replies=["not json at all"])
    result = await _client(fake, RecordingLedger()).finalize("enhanced prompt", None, tenant_id="t1")
    assert result.text == "enhanced prompt"


@pytest.mark.asyncio
async def test_synthesize_batches_and_skips_bad_payloads():
    ledger = RecordingLedger()
    fake = FakeOpenAI(image_batches=[[B64, "<html>error</html>", B64], [B64]])

    result = await _client(fake, ledger, batch_size=3).synthesize(
        "/imagine a cake --ar 3:4", tenant_id="t1", count=4, aspect_ratio="1:1",
    )

    assert len(result.artifacts) == 3
    assert all(a.data.startswith("data:image/png;base64,") for a in result.artifacts)
    assert [req["n"] for req in fake.image_requests] == [3, 1]
    assert fake.image_requests[0]["prompt"] == "a cake"
    assert fake.image_requests[0]["size"] == "1024x1024"
    assert [r.endpoint for r in ledger.records] == [
        "image-generator/generate-image-1",
        "image-generator/generate-image-2",
        "image-generator/generate-image-3",
    ]


@pytest.mark.asyncio
async def test_synthesize_raises_when_every_batch_fails():
    fake = FakeOpenAI(image_batches=[RuntimeError("503 service unavailable")])
    with pytest.raises(ExternalServiceError) as exc:
        await _client(fake, RecordingLedger()).synthesize("cake", tenant_id="t1", count=2, aspect_ratio="3:4")
    assert exc.value.code == "SERVER"


@pytest.mark.asyncio
async def test_caption_review_clamps_scores_and_fills_gaps():
    reply = json.dumps({"analyses": [{"variation": 1, "engagementScore": 3, "viralityPotential": "VERY HIGH"}]})
    fake = FakeOpenAI(replies=[reply])
    captions = [CaptionDraft(text="one"), CaptionDraft(text="two")]

    result = await _client(fake, RecordingLedger()).analyze_captions(captions, "INSTAGRAM", "bread", "EN", tenant_id="t1")

    assert result.analyses[0].engagement_score == 7
    assert result.analyses[0].virality_potential == "VERY HIGH"
    assert result.analyses[1].engagement_score == 8
    assert result.analyses[1].virality_potential == "HIGH"


@pytest.mark.asyncio
async def test_caption_generation_falls_back_on_bad_json():
    fake = FakeOpenAI(replies=["garbage"])
    result = await _client(fake, RecordingLedger()).analyze_image_and_caption(
        PNG_BYTES, "image/png", {"use_hashtags": False, "language": "EN"}, None, tenant_id="t1",
    )
    assert len(result.captions) == 3
    assert all(c.hashtags == "" for c in result.captions)
