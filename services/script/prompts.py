"""
Prompt construction for the narration script request.
"""

from typing import Optional

from .models import ScrapedPage

SYSTEM_PROMPT = """You are a senior launch-video script writer.
Given scraped website data, generate structured script JSON for a 35-45 second intro video.

Output ONLY valid JSON matching this exact schema:
{
  "brandName": "string",
  "brandUrl": "string domain like example.com",
  "brandColor": "string hex color",
  "accentColor": "string hex color",
  "tagline": "string max 8 words",
  "hookLine1": "string 2-4 words",
  "hookLine2": "string 2-4 words",
  "hookKeyword": "string 2-4 words",
  "narrationSegments": [
    "segment 1 brand reveal",
    "segment 2 hook expansion",
    "segment 3 brand introduction",
    "segment 4 feature one",
    "segment 5 feature two",
    "segment 6 feature three",
    "segment 7 integrations",
    "segment 8 closing CTA"
  ],
  "features": [
    {
      "icon": "mail|ai|social|code|calendar|analytics|chat|commerce|finance|health|support|docs|media|generic",
      "appName": "string",
      "caption": "string",
      "demoLines": ["string"]
    }
  ],
  "integrations": ["string"],
  "ctaUrl": "string domain"
}

Rules:
- features must have exactly 3 items, each with a different context.
- narrationSegments must have exactly 8 items and read naturally in order.
- total narration must be 100-140 words.
- segment 3 must introduce the brand by name.
- segments 4-6 must reference the corresponding feature contexts.
- use concrete on-screen details: names, statuses, numbers, dates, priorities, outcomes.
- avoid placeholders, empty claims, and generic buzzwords.
- integrations must contain real tools.
- output JSON only."""

MAX_FEATURE_LINES = 18
MAX_BODY_CHARS = 2200


def build_user_prompt(page: ScrapedPage, correction: Optional[str] = None) -> str:
    """
    Build the user message for one attempt.

    Args:
        page: Scraped source page
        correction: Violation from the previous attempt, appended as a hint

    Returns:
        Prompt text
    """
    headings = "\n".join(page.headings)
    features = "\n".join(page.features[:MAX_FEATURE_LINES])

    prompt = f"""Generate a script for this product:

URL: {page.url}
Domain: {page.domain}
Title: {page.title}
Description: {page.description}
OG Title: {page.og_title}
OG Description: {page.og_description}

Headings:
{headings}

Features/benefits:
{features}

Body excerpt:
{page.body_text[:MAX_BODY_CHARS]}

Colors found: {", ".join(page.colors)}
Structured hints: {", ".join(page.structured_hints)}"""

    if correction:
        prompt += (
            f"\n\nThe previous attempt was rejected: {correction}."
            "\nFix exactly this while keeping the JSON valid: exactly 3 features, "
            "exactly 8 narrationSegments, and 100-140 narration words in total."
        )

    return prompt
