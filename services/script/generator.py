"""
Script Generator Service
========================
Turns a scraped page into an accepted NarrationScript using OpenAI.

Every candidate is checked against a fixed contract: required fields present,
exactly 3 features, exactly 8 narration segments, and 100-140 narration words.
Attempts that miss the word band are retried; on the last attempt the band is
enforced locally (booster sentences or per-segment truncation) instead.

Usage:
    >>> generator = ScriptGeneratorService(get_settings())
    >>> script = await generator.generate(page)
    >>> script.scene_weights  # [max(words, 2) for each segment]
"""

import json
import re
from typing import Any, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from config.settings import NarrationSettings
from shared.errors import GenerationError
from shared.text import count_words

from .models import (
    FEATURE_COUNT,
    MAX_NARRATION_WORDS,
    MIN_NARRATION_WORDS,
    NARRATION_SEGMENT_COUNT,
    NarrationScript,
    ScrapedPage,
    script_from_candidate,
)
from .prompts import SYSTEM_PROMPT, build_user_prompt

MAX_ATTEMPTS = 3
MAX_BOOSTER_ITERATIONS = 20

REQUIRED_FIELDS = [
    "brandName",
    "brandUrl",
    "tagline",
    "hookLine1",
    "hookLine2",
    "hookKeyword",
    "features",
    "integrations",
    "ctaUrl",
    "narrationSegments",
]

# Appended cyclically to segments 3-6 (features + integrations) when short.
BOOSTER_SENTENCES = [
    "This reduces delay between planning and execution.",
    "Teams keep context while priorities keep moving.",
    "Work stays visible with ownership and status in one place.",
    "You can move from signal to action without tool switching.",
]
BOOSTER_FIRST_INDEX = 3
BOOSTER_SLOT_COUNT = 4

# Per-segment word ceilings applied when the narration runs long.
SEGMENT_WORD_CEILINGS = [12, 16, 10, 22, 22, 22, 18, 14]

_TRAILING_PUNCTUATION = re.compile(r"[,.!?;:]+$")


class ContractViolation(ValueError):
    """A candidate failed the script contract."""


def validate_candidate(candidate: Any) -> None:
    """
    Check the structural contract of a parsed model response.

    Raises:
        ContractViolation: describing the first violated rule
    """
    if not isinstance(candidate, dict):
        raise ContractViolation("Response is not a JSON object")

    for field in REQUIRED_FIELDS:
        if not candidate.get(field):
            raise ContractViolation(f"Missing required field: {field}")

    features = candidate["features"]
    if not isinstance(features, list) or len(features) != FEATURE_COUNT:
        got = len(features) if isinstance(features, list) else type(features).__name__
        raise ContractViolation(f"Expected {FEATURE_COUNT} features, got {got}")

    segments = candidate["narrationSegments"]
    if not isinstance(segments, list) or len(segments) != NARRATION_SEGMENT_COUNT:
        got = len(segments) if isinstance(segments, list) else type(segments).__name__
        raise ContractViolation(f"Expected {NARRATION_SEGMENT_COUNT} narration segments, got {got}")

    if not all(isinstance(s, str) and s.strip() for s in segments):
        raise ContractViolation("Narration segments must be non-empty strings")


def total_words(segments: list[str]) -> int:
    return count_words(" ".join(segments))


def normalize_word_count(
    segments: list[str],
    min_words: int = MIN_NARRATION_WORDS,
    max_words: int = MAX_NARRATION_WORDS,
) -> list[str]:
    """
    Locally pull a narration into the word band.

    Under the floor, booster sentences are appended cyclically to segments
    3-6 until the floor is met or the iteration cap is hit. Over the ceiling,
    each segment is cut to its word ceiling and re-punctuated.

    Args:
        segments: The 8 narration segments
        min_words: Word floor
        max_words: Word ceiling

    Returns:
        New list of segments (input is not modified)
    """
    result = list(segments)

    iteration = 0
    while total_words(result) < min_words and iteration < MAX_BOOSTER_ITERATIONS:
        target = BOOSTER_FIRST_INDEX + (iteration % BOOSTER_SLOT_COUNT)
        booster = BOOSTER_SENTENCES[iteration % len(BOOSTER_SENTENCES)]
        result[target] = f"{result[target]} {booster}".strip()
        iteration += 1

    if total_words(result) > max_words:
        for idx, ceiling in enumerate(SEGMENT_WORD_CEILINGS[: len(result)]):
            words = result[idx].split()
            if len(words) > ceiling:
                result[idx] = _TRAILING_PUNCTUATION.sub("", " ".join(words[:ceiling])) + "."

    return result


class ScriptGeneratorService:
    """
    Script Generator Service

    Requests structured script JSON from a chat model and enforces the
    narration contract before accepting it.
    """

    def __init__(
        self,
        settings: NarrationSettings,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings
        self._client = client
        self.model = settings.script_model
        self.temperature = 0.65
        self.max_attempts = MAX_ATTEMPTS

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.settings.credentials.openai_api_key
            if not api_key:
                raise GenerationError("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def generate(self, page: ScrapedPage) -> NarrationScript:
        """
        Generate an accepted narration script for a scraped page.

        Args:
            page: Scraped source content

        Returns:
            NarrationScript within the word band

        Raises:
            GenerationError: If no attempt produced a valid script
        """
        min_words = MIN_NARRATION_WORDS
        max_words = MAX_NARRATION_WORDS
        last_violation: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            final_attempt = attempt == self.max_attempts
            correction = last_violation if attempt > 1 else None

            try:
                content = await self._request(page, correction)
            except OpenAIError as e:
                last_violation = f"Model request failed: {e}"
                logger.warning(f"Script attempt {attempt}/{self.max_attempts}: {last_violation}")
                continue

            try:
                candidate = self._parse(content)
                validate_candidate(candidate)
            except ContractViolation as e:
                last_violation = str(e)
                logger.warning(f"Script attempt {attempt}/{self.max_attempts} rejected: {last_violation}")
                continue

            words = total_words(candidate["narrationSegments"])
            if not min_words <= words <= max_words:
                if not final_attempt:
                    last_violation = f"Narration word count {words} outside {min_words}-{max_words}"
                    logger.warning(f"Script attempt {attempt}/{self.max_attempts} rejected: {last_violation}")
                    continue

                candidate["narrationSegments"] = normalize_word_count(
                    candidate["narrationSegments"], min_words, max_words
                )
                normalized = total_words(candidate["narrationSegments"])
                logger.info(f"Normalized narration from {words} to {normalized} words")
                if not min_words <= normalized <= max_words:
                    last_violation = (
                        f"Narration word count {normalized} outside {min_words}-{max_words} "
                        "after normalization"
                    )
                    break

            try:
                script = script_from_candidate(candidate)
            except ValueError as e:
                last_violation = f"Invalid script fields: {e}"
                logger.warning(f"Script attempt {attempt}/{self.max_attempts} rejected: {last_violation}")
                continue

            logger.info(
                f"Script accepted on attempt {attempt}: {script.brand_name}, "
                f"{script.word_count} words"
            )
            return script

        raise GenerationError(
            f"Failed to generate valid script after {self.max_attempts} attempts: {last_violation}",
            last_violation=last_violation,
        )

    async def _request(self, page: ScrapedPage, correction: Optional[str]) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(page, correction)},
            ],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        if not response.choices:
            return None
        return response.choices[0].message.content

    @staticmethod
    def _parse(content: Optional[str]) -> dict:
        if not content:
            raise ContractViolation("Empty response from model")
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise ContractViolation(f"Response is not valid JSON: {e.msg}") from e
