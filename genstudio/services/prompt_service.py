# FILE: genstudio/services/prompt_service.py

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

CHARACTER_RANGES = {
    "SHORT": "50-100 characters",
    "MEDIUM": "100-200 characters",
    "LONG": "200-300 characters",
}

LANGUAGE_NAMES = {
    "EN": "English",
    "ID": "Indonesian (Bahasa Indonesia)",
}

_IMAGINE_PREFIX = re.compile(r"^/?imagine\s*", re.I)
_DISCORD_PARAMS = re.compile(r"--[a-z]+\s+[\w:]+", re.I)


def fill_template(template: str, fields: Dict[str, Any]) -> str:
    """Replace every {key} placeholder with its value from ``fields``."""
    out = template
    for key, value in (fields or {}).items():
        out = out.replace("{" + str(key) + "}", str(value))
    return out


def clean_image_prompt(prompt: str) -> str:
    """Strip /imagine prefixes and discord-style --flag parameters."""
    p = _IMAGINE_PREFIX.sub("", (prompt or "").strip())
    p = _DISCORD_PARAMS.sub("", p)
    return re.sub(r"\s{2,}", " ", p).strip()


# =========================
# IMAGE PIPELINE
# =========================
def build_analysis_system_prompt() -> str:
    return (
        "You are a professional image generation prompt engineer. "
        "You analyze prompts and return strict JSON only."
    )


def build_analysis_user_prompt(
    user_prompt: str,
    business_context: Optional[str] = None,
    template_context: Optional[str] = None,
) -> str:
    parts = [
        "Analyze and enhance the user's prompt for optimal image generation results.",
        "",
        f'User\'s original prompt: "{user_prompt}"',
    ]
    if template_context:
        parts.append(f"Template context: {template_context}")
    if business_context:
        parts.append(f"Business context: {business_context}")

    parts += [
        "",
        "Return your response in this JSON format:",
        '{"enhancedPrompt": "your enhanced prompt here", "analysis": "explanation of improvements made"}',
        "",
        "Focus on:",
        "- Adding technical photography terms",
        "- Improving composition descriptions",
        "- Enhancing lighting and style details",
        "- Making the prompt more specific and actionable",
        "- Maintaining the original intent while optimizing for image AI",
    ]
    return "\n".join(parts)


def build_final_system_prompt() -> str:
    return (
        "You write the final prompt sent to an image model. "
        "Return strict JSON only."
    )


def build_final_user_prompt(enhanced_prompt: str, business_context: Optional[str] = None) -> str:
    parts = [
        "Turn this enhanced prompt into one concise, vivid image generation prompt (max 120 words).",
        "Do not include aspect ratio flags, model names or markdown.",
        "",
        f"Enhanced prompt: {enhanced_prompt}",
    ]
    if business_context:
        parts.append(f"Keep it on-brand for: {business_context}")
    parts += ["", 'Return JSON: {"finalPrompt": "..."}']
    return "\n".join(parts)


# =========================
# CAPTION PIPELINE
# =========================
def build_caption_system_prompt(language: str) -> str:
    lang = LANGUAGE_NAMES.get(language, LANGUAGE_NAMES["EN"])
    return (
        "You are a social media copywriter. Look at the product photo and write captions. "
        f"Write every caption in {lang}. Return strict JSON only."
    )


def build_caption_user_prompt(options: Dict[str, Any], business_context: Optional[str] = None) -> str:
    length = CHARACTER_RANGES.get(options.get("caption_length") or "MEDIUM", CHARACTER_RANGES["MEDIUM"])
    parts = [
        "First describe what the image shows, then write 3 caption variations:",
        "1. Emotional/Storytelling  2. Direct/Sales  3. Educational/Informative",
        "",
        f"Platform: {options.get('platform')}",
        f"Tone: {options.get('tone')}",
        f"Length: {length}",
        f"Use emojis: {'yes' if options.get('use_emojis', True) else 'no'}",
        f"Use hashtags: {'yes (5-10)' if options.get('use_hashtags', True) else 'no'}",
    ]
    if options.get("caption_idea"):
        parts.append(f"Caption idea: {options['caption_idea']}")
    if options.get("target_audience"):
        parts.append(f"Target audience: {options['target_audience']}")
    if business_context:
        parts.append(f"Business context:\n{business_context}")

    parts += [
        "",
        "Return JSON:",
        '{"imageAnalysis": "...", "captions": [{"variation": 1, "approach": "...", "text": "...", '
        '"hashtags": "#a #b", "characterCount": 120}]}',
    ]
    return "\n".join(parts)


def build_caption_analysis_system_prompt(language: str) -> str:
    lang = LANGUAGE_NAMES.get(language, LANGUAGE_NAMES["EN"])
    return (
        "You are a social media marketing analyst. Score captions positively (7-10) and explain "
        f"their strengths. Write all analysis text in {lang}. Return strict JSON only."
    )


def build_caption_analysis_user_prompt(
    captions: List[Dict[str, Any]],
    platform: str,
    image_analysis: str,
) -> str:
    return "\n".join([
        f"Platform: {platform}",
        f"Image analysis: {image_analysis}",
        "",
        "Captions:",
        json.dumps(captions, ensure_ascii=False, indent=2),
        "",
        "For each caption return scores from 7 to 10 for engagementScore, readabilityScore, ctaStrength, "
        "brandVoiceScore, trendingPotential, emotionalImpact, hookEffectiveness, platformOptimization, "
        'keywordRelevance; viralityPotential as "HIGH" or "VERY HIGH"; strengths (3 items); '
        "marketingImpact; whyItWorks.",
        "",
        'Return JSON: {"analyses": [{"variation": 1, ...}]}',
    ])
