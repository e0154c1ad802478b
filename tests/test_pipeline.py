"""
Tests for the end-to-end narration pipeline: engine fallback, silent
degradation and run manifests.
"""
import json
from pathlib import Path

import httpx
import pytest

from config.settings import VoiceEngineName, VoiceMode
from conftest import FakeSpeech, FakeToolkit, fake_openai_client, make_candidate
from services.audio.assembler import SegmentAssembler
from services.pipeline.narration_pipeline import NarrationPipeline, RunStatus, output_name_for
from services.script import ScriptGeneratorService
from services.timeline import TimelineScheduler, TimingSource
from services.tts import VoiceSynthesisEngine
from services.tts.adapters import OpenAIEngine
from shared.errors import EngineUnavailableError, GenerationError


def _rate_limited(request):
    return httpx.Response(429, text="rate limited")


def _pipeline(settings, no_sleep, chat=None, speech=None):
    toolkit = FakeToolkit()
    client = fake_openai_client(chat_responses=chat or [make_candidate()], speech=speech or FakeSpeech())
    voice = VoiceSynthesisEngine(
        settings,
        toolkit,
        transport=httpx.MockTransport(_rate_limited),
        sleep=no_sleep,
        adapters={VoiceEngineName.OPENAI: OpenAIEngine("sk", toolkit, client=client)},
    )
    pipeline = NarrationPipeline(
        settings=settings,
        script_generator=ScriptGeneratorService(settings, client=client),
        voice=voice,
        assembler=SegmentAssembler(voice, toolkit, settings.scratch_dir),
        scheduler=TimelineScheduler(settings.timeline),
    )
    return pipeline, toolkit, client


def _manifest(out_dir, name="acme-io"):
    path = Path(out_dir) / f"{name}-job.json"
    return json.loads(path.read_text())


class TestOutputName:

    def test_from_url(self):
        assert output_name_for("https://www.acme.io/") == "acme-io"
        assert output_name_for("app.example.com/pricing") == "app-example-com"


class TestEngineFallback:

    @pytest.mark.asyncio
    async def test_rate_limited_primary_falls_back(self, settings, page, no_sleep):
        pipeline, toolkit, client = _pipeline(settings, no_sleep)

        result = await pipeline.run(page)

        assert result.narration.engine_used == VoiceEngineName.OPENAI
        assert Path(result.narration.artifact_path).exists()
        assert result.handoff.audio_src == result.narration.artifact_path
        assert result.manifest.status == RunStatus.COMPLETED
        assert result.manifest.engine_used == VoiceEngineName.OPENAI
        # ElevenLabs backed off three times before giving up
        assert no_sleep.delays == [2.0, 4.0, 8.0]
        assert len(client.audio.speech.calls) == 1

    @pytest.mark.asyncio
    async def test_segmented_mode_schedules_exactly(self, settings, page, no_sleep):
        settings = settings.model_copy(update={"voice_mode": VoiceMode.SEGMENTED})
        pipeline, toolkit, client = _pipeline(settings, no_sleep)

        result = await pipeline.run(page)

        # Each crossfade boundary costs the earlier segment 30ms
        assert result.narration.segment_durations_ms == [4470] * 7 + [4500]
        assert result.narration.timing_exact is True
        assert result.schedule.timing_source == TimingSource.EXACT
        assert result.schedule.scene_frames[1] == 135 + 12
        assert result.schedule.total_frames == 15 + 135 * 8 + 30
        assert result.handoff.timing_exact is True
        assert len(toolkit.ops("master")) == 1

    @pytest.mark.asyncio
    async def test_requested_engine_only(self, settings, page, no_sleep):
        settings = settings.model_copy(update={"voice_engine": VoiceEngineName.OPENAI})
        pipeline, _, _ = _pipeline(settings, no_sleep)

        result = await pipeline.run(page)

        assert result.narration.engine_used == VoiceEngineName.OPENAI
        assert no_sleep.delays == []


class TestDegradation:

    @pytest.mark.asyncio
    async def test_all_engines_fail_gives_silent_timeline(self, settings, page, no_sleep):
        pipeline, _, _ = _pipeline(
            settings, no_sleep, speech=FakeSpeech(fail_on_calls=range(1, 20))
        )

        result = await pipeline.run(page)

        assert result.narration is None
        assert result.handoff.audio_src is None
        assert result.schedule.timing_source == TimingSource.WEIGHTED
        # 120 words * 375ms + 8 sentences * 250ms = 47s -> 1410 frames
        assert result.schedule.total_frames == 15 + 1410 + 30
        assert min(result.schedule.scene_frames) >= 96
        assert result.manifest.status == RunStatus.COMPLETED
        assert any(e.status == "degraded" for e in result.manifest.events)
        assert not list(Path(settings.output_dir).glob("*.mp3"))

    @pytest.mark.asyncio
    async def test_voice_disabled(self, settings, page, no_sleep):
        settings = settings.model_copy(update={"voice_enabled": False})
        pipeline, _, client = _pipeline(settings, no_sleep)

        result = await pipeline.run(page)

        assert result.narration is None
        assert result.schedule.timing_source == TimingSource.WEIGHTED
        assert client.audio.speech.calls == []
        assert any(e.stage == "voice" and e.status == "skipped" for e in result.manifest.events)


class TestArtifacts:

    @pytest.mark.asyncio
    async def test_writes_script_timeline_and_manifest(self, settings, page, no_sleep):
        pipeline, _, _ = _pipeline(settings, no_sleep)

        result = await pipeline.run(page)

        script = json.loads(Path(result.script_path).read_text())
        assert script["brandName"] == "Acme"
        assert "narration" in script

        timeline = json.loads(Path(result.timeline_path).read_text())
        assert timeline["sceneSlots"][0] == "brandReveal"
        assert len(timeline["sceneFrames"]) == 8
        assert timeline["content"]["brandName"] == "Acme"
        assert "narrationSegments" not in timeline["content"]

        manifest = _manifest(settings.output_dir)
        assert manifest["status"] == "completed"
        assert [e["stage"] for e in manifest["events"]][0] == "run"

    @pytest.mark.asyncio
    async def test_script_failure_aborts_run(self, settings, page, no_sleep):
        pipeline, _, _ = _pipeline(settings, no_sleep, chat=["", "", ""])

        with pytest.raises(GenerationError):
            await pipeline.run(page)

        manifest = _manifest(settings.output_dir)
        assert manifest["status"] == "failed"
        assert "3 attempts" in manifest["error"]

    @pytest.mark.asyncio
    async def test_unconfigured_engine_aborts_run(self, settings, page, no_sleep):
        settings = settings.model_copy(update={"voice_engine": VoiceEngineName.CHATTERBOX})
        pipeline, _, _ = _pipeline(settings, no_sleep)

        with pytest.raises(EngineUnavailableError):
            await pipeline.run(page)

        assert _manifest(settings.output_dir)["status"] == "failed"
