# FILE: genstudio/services/caption_service.py
import json
import re
from typing import List, Optional

from genstudio.schemas.generation import CaptionAnalysis, CaptionDraft, RawArtifact

_EMOJI = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "☀-⛿"
    "✀-➿"
    "\U0001F900-\U0001F9FF"
    "\U0001F018-\U0001F251"
    "]"
)
_DASHES = re.compile("[—–]")


def filter_caption_text(text: str, use_emojis: bool) -> str:
    """Drop emojis when disabled; em and en dashes always become '-'."""
    out = text or ""
    if not use_emojis:
        out = _EMOJI.sub("", out)
        out = re.sub(r"\s+", " ", out).strip()
    return _DASHES.sub("-", out)


def count_hashtags(hashtags: Optional[str]) -> int:
    return len(re.findall(r"#\w+", hashtags or ""))


def build_caption_artifacts(
    captions: List[CaptionDraft],
    analyses: List[CaptionAnalysis],
    *,
    use_emojis: bool,
    use_hashtags: bool,
    platform: str,
    language: str,
    model: str = "",
) -> List[RawArtifact]:
    """One JSON document per caption variation, paired with its analysis by position."""
    artifacts: List[RawArtifact] = []
    for i, draft in enumerate(captions):
        text = filter_caption_text(draft.text, use_emojis)
        hashtags = draft.hashtags if use_hashtags else ""
        analysis = analyses[i] if i < len(analyses) else CaptionAnalysis(variation=i + 1)
        details = analysis.model_dump()
        details.update({
            "approach": draft.approach,
            "character_count": len(text),
            "hashtag_count": count_hashtags(hashtags),
        })

        doc = {
            "variation": i + 1,
            "platform": platform,
            "language": language,
            "text": text,
            "hashtags": hashtags,
            "analysis": details,
        }
        artifacts.append(RawArtifact(
            data=json.dumps(doc, ensure_ascii=False),
            content_type="application/json",
            seed=f"{model}-caption-{i + 1}" if model else None,
            text_content=text,
            hashtags=hashtags or None,
            details=details,
        ))
    return artifacts
