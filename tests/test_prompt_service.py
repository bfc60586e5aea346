from genstudio.schemas.generation import CaptionAnalysis, CaptionDraft
from genstudio.services.caption_service import build_caption_artifacts, count_hashtags, filter_caption_text
from genstudio.services.prompt_service import (
    build_analysis_user_prompt,
    build_caption_system_prompt,
    build_caption_user_prompt,
    clean_image_prompt,
    fill_template,
)


def test_fill_template_replaces_every_placeholder():
    assert fill_template("{a} and {a} with {b}", {"a": "x", "b": 2}) == "x and x with 2"
    assert fill_template("keep {missing}", {}) == "keep {missing}"


def test_clean_image_prompt():
    assert clean_image_prompt("/imagine  a red car --ar 16:9 --v 6") == "a red car"
    assert clean_image_prompt("plain prompt") == "plain prompt"


def test_analysis_prompt_includes_optional_context():
    text = build_analysis_user_prompt("cake", "Business: Roti", "Product Shot")
    assert 'User\'s original prompt: "cake"' in text
    assert "Template context: Product Shot" in text
    assert "Business context: Business: Roti" in text
    assert "Business context" not in build_analysis_user_prompt("cake")


def test_caption_prompts_follow_language_and_options():
    assert "Indonesian" in build_caption_system_prompt("ID")
    assert "English" in build_caption_system_prompt("XX")

    text = build_caption_user_prompt({"platform": "TIKTOK", "tone": "FUNNY", "caption_length": "SHORT", "use_emojis": False})
    assert "Length: 50-100 characters" in text
    assert "Use emojis: no" in text


def test_filter_caption_text():
    assert filter_caption_text("Hello \U0001F600 world ✨", use_emojis=False) == "Hello world"
    assert filter_caption_text("Hello \U0001F600 world", use_emojis=True) == "Hello \U0001F600 world"
    assert filter_caption_text("a — b – c", use_emojis=True) == "a - b - c"


def test_count_hashtags():
    assert count_hashtags("#one #two three #four") == 3
    assert count_hashtags(None) == 0


def test_caption_artifacts_pair_analysis_by_position():
    drafts = [CaptionDraft(text="first", hashtags="#a"), CaptionDraft(text="second", hashtags="#b #c")]
    analyses = [CaptionAnalysis(variation=1, engagement_score=10)]

    artifacts = build_caption_artifacts(
        drafts, analyses, use_emojis=True, use_hashtags=False, platform="INSTAGRAM", language="EN",
    )

    assert [a.content_type for a in artifacts] == ["application/json", "application/json"]
    assert artifacts[0].details["engagement_score"] == 10
    assert artifacts[1].details["variation"] == 2
    assert artifacts[1].hashtags is None
    assert artifacts[1].details["hashtag_count"] == 0
