"""
Script Models
=============
Data models for the scraped source page and the accepted narration script.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from shared.text import count_words

NARRATION_SEGMENT_COUNT = 8
FEATURE_COUNT = 3
MIN_NARRATION_WORDS = 100
MAX_NARRATION_WORDS = 140
MIN_SCENE_WEIGHT = 2


class SceneSlot(str, Enum):
    """Fixed scene slots, one per narration segment, in playback order."""
    BRAND_REVEAL = "brandReveal"
    HOOK = "hookText"
    WORDMARK = "wordmark"
    FEATURE_1 = "feature1"
    FEATURE_2 = "feature2"
    FEATURE_3 = "feature3"
    INTEGRATIONS = "integrations"
    CLOSING = "closing"


SCENE_SLOTS = list(SceneSlot)


class ScrapedPage(BaseModel):
    """Flat record produced by the web scraper. Only string fields are read."""
    url: str
    domain: str = ""
    title: str = ""
    description: str = ""
    og_title: str = Field(default="", alias="ogTitle")
    og_description: str = Field(default="", alias="ogDescription")
    headings: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    body_text: str = Field(default="", alias="bodyText")
    colors: list[str] = Field(default_factory=list)
    structured_hints: list[str] = Field(default_factory=list, alias="structuredHints")

    class Config:
        populate_by_name = True


class Feature(BaseModel):
    """One feature card shown in a feature scene."""
    icon: str = "generic"
    app_name: str = Field(alias="appName")
    caption: str = ""
    demo_lines: list[str] = Field(default_factory=list, alias="demoLines")

    class Config:
        populate_by_name = True


class NarrationScript(BaseModel):
    """
    Accepted narration script.

    Exactly 8 segments (one per SceneSlot) totalling 100-140 words, plus the
    content fields handed to the renderer. Immutable once constructed.
    """
    brand_name: str = Field(alias="brandName")
    brand_url: str = Field(alias="brandUrl")
    brand_color: str = Field(default="#111111", alias="brandColor")
    accent_color: str = Field(default="#2563EB", alias="accentColor")
    tagline: str
    hook_line1: str = Field(alias="hookLine1")
    hook_line2: str = Field(alias="hookLine2")
    hook_keyword: str = Field(alias="hookKeyword")
    features: list[Feature]
    integrations: list[str]
    cta_url: str = Field(alias="ctaUrl")
    narration_segments: list[str] = Field(alias="narrationSegments")
    scene_weights: list[int] = Field(default_factory=list, alias="sceneWeights")

    class Config:
        populate_by_name = True
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def _default_scene_weights(cls, data):
        if isinstance(data, dict) and not (data.get("scene_weights") or data.get("sceneWeights")):
            segments = data.get("narration_segments") or data.get("narrationSegments") or []
            data = {**data, "scene_weights": scene_weights_for(list(segments))}
        return data

    @model_validator(mode="after")
    def _check_contract(self) -> "NarrationScript":
        if len(self.narration_segments) != NARRATION_SEGMENT_COUNT:
            raise ValueError(
                f"Expected {NARRATION_SEGMENT_COUNT} narration segments, "
                f"got {len(self.narration_segments)}"
            )
        if len(self.features) != FEATURE_COUNT:
            raise ValueError(f"Expected {FEATURE_COUNT} features, got {len(self.features)}")
        words = self.word_count
        if not MIN_NARRATION_WORDS <= words <= MAX_NARRATION_WORDS:
            raise ValueError(
                f"Narration word count {words} outside "
                f"{MIN_NARRATION_WORDS}-{MAX_NARRATION_WORDS}"
            )
        return self

    @property
    def narration(self) -> str:
        return " ".join(self.narration_segments)

    @property
    def word_count(self) -> int:
        return count_words(self.narration)

    def segment_for(self, slot: SceneSlot) -> str:
        return self.narration_segments[SCENE_SLOTS.index(slot)]

    def content_fields(self) -> dict:
        """Content the renderer consumes; narration text is not part of it."""
        return self.model_dump(by_alias=True, exclude={"narration_segments", "scene_weights"})


def scene_weights_for(segments: list[str]) -> list[int]:
    """Per-scene timing fallback: max(word count, 2)."""
    return [max(count_words(segment), MIN_SCENE_WEIGHT) for segment in segments]


def script_from_candidate(candidate: dict, scene_weights: Optional[list[int]] = None) -> NarrationScript:
    """Build the immutable script from a validated model candidate."""
    segments = list(candidate["narrationSegments"])
    return NarrationScript(
        brand_name=candidate["brandName"],
        brand_url=candidate["brandUrl"],
        brand_color=candidate.get("brandColor") or "#111111",
        accent_color=candidate.get("accentColor") or "#2563EB",
        tagline=candidate["tagline"],
        hook_line1=candidate["hookLine1"],
        hook_line2=candidate["hookLine2"],
        hook_keyword=candidate["hookKeyword"],
        features=[Feature.model_validate(f) for f in candidate["features"]],
        integrations=list(candidate["integrations"]),
        cta_url=candidate["ctaUrl"],
        narration_segments=segments,
        scene_weights=scene_weights or scene_weights_for(segments),
    )
