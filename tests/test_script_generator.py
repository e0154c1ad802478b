"""
Tests for narration script generation and contract enforcement.
"""
import json

import httpx
import openai
import pytest

from conftest import fake_openai_client, make_candidate, words
from services.script import NarrationScript, ScriptGeneratorService, load_script, save_script
from services.script.generator import (
    SEGMENT_WORD_CEILINGS,
    ContractViolation,
    normalize_word_count,
    total_words,
    validate_candidate,
)
from services.script.models import (
    MAX_NARRATION_WORDS,
    SceneSlot,
    scene_weights_for,
    script_from_candidate,
)
from shared.errors import GenerationError


def _generator(settings, responses):
    client = fake_openai_client(chat_responses=responses)
    return ScriptGeneratorService(settings, client=client), client.chat.completions


class TestValidateCandidate:
    """Structural contract checks."""

    def test_valid_candidate_passes(self):
        validate_candidate(make_candidate())

    def test_missing_field(self):
        candidate = make_candidate()
        del candidate["tagline"]
        with pytest.raises(ContractViolation, match="tagline"):
            validate_candidate(candidate)

    def test_empty_array_counts_as_missing(self):
        with pytest.raises(ContractViolation, match="integrations"):
            validate_candidate(make_candidate(integrations=[]))

    def test_wrong_feature_count(self):
        candidate = make_candidate()
        candidate["features"] = candidate["features"][:2]
        with pytest.raises(ContractViolation, match="3 features"):
            validate_candidate(candidate)

    def test_wrong_segment_count(self):
        with pytest.raises(ContractViolation, match="8 narration segments"):
            validate_candidate(make_candidate(segment_words=[15] * 7))

    def test_not_an_object(self):
        with pytest.raises(ContractViolation):
            validate_candidate(["not", "a", "dict"])


class TestNormalizeWordCount:
    """Local word band enforcement."""

    def test_short_narration_gets_boosters_on_feature_segments(self):
        segments = [words(10)] * 8
        result = normalize_word_count(segments)

        assert 100 <= total_words(result) <= 140
        assert result[:3] == segments[:3]
        assert result[7] == segments[7]
        assert result[3] != segments[3]

    def test_booster_cap_stops_iteration(self):
        # Floor far out of reach: 20 boosters then stop
        result = normalize_word_count([words(1)] * 8, min_words=1000, max_words=2000)
        assert total_words(result) < 1000

    def test_long_narration_truncated_to_ceilings(self):
        result = normalize_word_count([words(30)] * 8)

        for segment, ceiling in zip(result, SEGMENT_WORD_CEILINGS):
            assert len(segment.split()) == ceiling
            assert segment.endswith(".")
            assert not segment.endswith("..")
        assert total_words(result) == sum(SEGMENT_WORD_CEILINGS)

    def test_in_band_unchanged(self):
        segments = [words(15)] * 8
        assert normalize_word_count(segments) == segments

    def test_input_not_mutated(self):
        segments = [words(10)] * 8
        normalize_word_count(segments)
        assert segments == [words(10)] * 8


class TestNarrationScript:
    """Immutable accepted script."""

    def test_weights_are_word_counts_with_floor(self):
        assert scene_weights_for(["One.", words(5), "Hi there."]) == [2, 5, 2]

    def test_weights_filled_when_missing(self):
        script = script_from_candidate(make_candidate())
        assert script.scene_weights == [15] * 8

    def test_word_band_enforced_on_construction(self):
        with pytest.raises(ValueError):
            script_from_candidate(make_candidate(segment_words=5))

    def test_segment_for_slot(self):
        candidate = make_candidate()
        candidate["narrationSegments"][7] = words(15, "closing")
        script = script_from_candidate(candidate)
        assert script.segment_for(SceneSlot.CLOSING).startswith("closing")

    def test_default_colors(self):
        candidate = make_candidate()
        del candidate["brandColor"]
        del candidate["accentColor"]
        script = script_from_candidate(candidate)
        assert script.brand_color == "#111111"
        assert script.accent_color == "#2563EB"

    def test_content_fields_exclude_narration(self):
        fields = script_from_candidate(make_candidate()).content_fields()
        assert fields["brandName"] == "Acme"
        assert "narrationSegments" not in fields
        assert "sceneWeights" not in fields

    def test_save_and_load(self, temp_dir):
        script = script_from_candidate(make_candidate())
        path = save_script(script, temp_dir / "acme-script.json")

        data = json.loads(path.read_text())
        assert data["narration"] == script.narration
        assert load_script(path) == script


class TestScriptGeneratorService:
    """Retry budget, correction hints and final-attempt normalization."""

    @pytest.mark.asyncio
    async def test_first_attempt_accepted(self, settings, page):
        generator, completions = _generator(settings, [make_candidate()])

        script = await generator.generate(page)

        assert isinstance(script, NarrationScript)
        assert script.word_count == 120
        assert len(completions.calls) == 1
        call = completions.calls[0]
        assert call["model"] == "gpt-4o"
        assert call["temperature"] == 0.65
        assert call["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_retries_with_correction_hint(self, settings, page):
        bad_features = make_candidate()
        bad_features["features"] = bad_features["features"][:1]
        generator, completions = _generator(
            settings, ["{not json", bad_features, make_candidate()]
        )

        script = await generator.generate(page)

        assert script.brand_name == "Acme"
        assert len(completions.calls) == 3
        first_prompt = completions.calls[0]["messages"][1]["content"]
        third_prompt = completions.calls[2]["messages"][1]["content"]
        assert "previous attempt was rejected" not in first_prompt
        assert "previous attempt was rejected" in third_prompt
        assert "3 features" in third_prompt

    @pytest.mark.asyncio
    async def test_word_count_retried_then_normalized_up(self, settings, page):
        short = make_candidate(segment_words=10)
        generator, completions = _generator(settings, [short, short, short])

        script = await generator.generate(page)

        assert len(completions.calls) == 3
        assert "word count 80" in completions.calls[1]["messages"][1]["content"]
        assert 100 <= script.word_count <= 140

    @pytest.mark.asyncio
    async def test_final_attempt_truncates_long_narration(self, settings, page):
        long = make_candidate(segment_words=25)
        generator, _ = _generator(settings, [long, long, long])

        script = await generator.generate(page)

        assert script.word_count == sum(SEGMENT_WORD_CEILINGS)

    @pytest.mark.asyncio
    async def test_normalization_out_of_band_fails(self, settings, page, monkeypatch):
        monkeypatch.setattr("services.script.generator.MAX_BOOSTER_ITERATIONS", 0)
        short = make_candidate(segment_words=10)
        generator, _ = _generator(settings, [short, short, short])

        with pytest.raises(GenerationError) as exc:
            await generator.generate(page)
        assert "after normalization" in exc.value.last_violation

    @pytest.mark.asyncio
    async def test_band_edges_match_script_contract(self, settings, page):
        at_ceiling = make_candidate(segment_words=[18] * 7 + [14])
        over_ceiling = make_candidate(segment_words=[18] * 7 + [15])
        generator, completions = _generator(settings, [over_ceiling, at_ceiling])

        script = await generator.generate(page)

        assert script.word_count == MAX_NARRATION_WORDS
        assert len(completions.calls) == 2
        assert "word count 141" in completions.calls[1]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, settings, page):
        generator, completions = _generator(settings, ["", "[]", "{}"])

        with pytest.raises(GenerationError, match="after 3 attempts"):
            await generator.generate(page)
        assert len(completions.calls) == 3

    @pytest.mark.asyncio
    async def test_model_error_counts_as_attempt(self, settings, page):
        error = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        )
        generator, completions = _generator(settings, [error, make_candidate()])

        script = await generator.generate(page)

        assert script.word_count == 120
        assert len(completions.calls) == 2

    @pytest.mark.asyncio
    async def test_missing_api_key(self, settings, page):
        settings = settings.model_copy(
            update={"credentials": settings.credentials.model_copy(update={"openai_api_key": None})}
        )
        with pytest.raises(GenerationError, match="OPENAI_API_KEY"):
            await ScriptGeneratorService(settings).generate(page)
