"""
Narration Pipeline
==================
End-to-end flow from a scraped page to a render-ready timeline:
1. Generate the narration script (contract enforced)
2. Synthesize and assemble the narration, falling back across engines
3. Schedule scenes from measured durations, or from word weights when
   there is no voice
4. Write the script, timeline handoff and run manifest as flat JSON

Voice failures degrade to a silent weight-scheduled timeline. Script,
credential and media tool failures abort the run.

Usage:
    from services.pipeline.narration_pipeline import NarrationPipeline

    pipeline = NarrationPipeline.from_settings(get_settings())
    result = await pipeline.run(page)
    result.handoff.scene_frames
"""

import re
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field

from config.settings import NarrationSettings, VoiceEngineName, VoiceMode
from services.audio.assembler import SegmentAssembler
from services.audio.media_tools import AudioToolkit
from services.audio.models import AssembledNarration
from services.script import NarrationScript, ScrapedPage, ScriptGeneratorService, save_script
from services.script.models import SCENE_SLOTS
from services.timeline import SceneSchedule, TimelineScheduler, ms_to_frames
from services.tts import VoiceSynthesisEngine
from shared.errors import EngineUnavailableError, NarrationError, SynthesisError
from shared.text import estimate_narration_duration_ms


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ManifestEvent(BaseModel):
    """One timestamped stage transition."""
    stage: str
    status: str
    message: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RunManifest(BaseModel):
    """Job record written next to the run's artifacts."""
    run_id: str = Field(default_factory=lambda: uuid4().hex[:12], alias="runId")
    source_url: str = Field(alias="sourceUrl")
    output_name: str = Field(alias="outputName")
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="startedAt")
    finished_at: Optional[datetime] = Field(None, alias="finishedAt")
    voice_mode: VoiceMode = Field(alias="voiceMode")
    engine_used: Optional[VoiceEngineName] = Field(None, alias="engineUsed")
    timing_exact: bool = Field(False, alias="timingExact")
    timing_source: Optional[str] = Field(None, alias="timingSource")
    audio_path: Optional[str] = Field(None, alias="audioPath")
    error: Optional[str] = None
    events: list[ManifestEvent] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    def record(self, stage: str, status: str, message: str = "") -> None:
        self.events.append(ManifestEvent(stage=stage, status=status, message=message))


class RenderHandoff(BaseModel):
    """Plain data consumed once by the renderer."""
    scene_slots: list[str] = Field(alias="sceneSlots")
    scene_frames: list[int] = Field(alias="sceneFrames")
    voice_start_frame: int = Field(alias="voiceStartFrame")
    total_frames: int = Field(alias="totalFrames")
    fps: int
    audio_src: Optional[str] = Field(None, alias="audioSrc")
    timing_exact: bool = Field(alias="timingExact")
    content: dict[str, Any]

    class Config:
        populate_by_name = True


class PipelineResult(BaseModel):
    script: NarrationScript
    narration: Optional[AssembledNarration] = None
    schedule: SceneSchedule
    handoff: RenderHandoff
    manifest: RunManifest
    script_path: str = Field(alias="scriptPath")
    timeline_path: str = Field(alias="timelinePath")
    manifest_path: str = Field(alias="manifestPath")

    class Config:
        populate_by_name = True


def output_name_for(url: str) -> str:
    """Derive a filesystem-safe run name from the page URL."""
    host = urlparse(url if "://" in url else f"https://{url}").hostname or "site"
    host = re.sub(r"^www\.", "", host)
    return re.sub(r"[^a-z0-9]+", "-", host.lower()).strip("-") or "site"


class NarrationPipeline:
    """Orchestrates script, voice and timeline for one page at a time."""

    def __init__(
        self,
        settings: NarrationSettings,
        script_generator: ScriptGeneratorService,
        voice: VoiceSynthesisEngine,
        assembler: SegmentAssembler,
        scheduler: TimelineScheduler,
    ):
        self.settings = settings
        self.script_generator = script_generator
        self.voice = voice
        self.assembler = assembler
        self.scheduler = scheduler

    @classmethod
    def from_settings(
        cls,
        settings: NarrationSettings,
        toolkit: Optional[AudioToolkit] = None,
    ) -> "NarrationPipeline":
        toolkit = toolkit or AudioToolkit(settings.ffmpeg_path, settings.ffprobe_path)
        voice = VoiceSynthesisEngine(settings, toolkit)
        return cls(
            settings=settings,
            script_generator=ScriptGeneratorService(settings),
            voice=voice,
            assembler=SegmentAssembler(voice, toolkit, settings.scratch_dir),
            scheduler=TimelineScheduler(settings.timeline),
        )

    async def run(self, page: ScrapedPage, output_name: Optional[str] = None) -> PipelineResult:
        """
        Run the whole pipeline for one page.

        Raises:
            GenerationError: If no valid script was produced
            EngineUnavailableError: If voice is enabled but no engine is configured
            AssemblyError: If media tooling fails
        """
        name = output_name or output_name_for(page.url)
        out_dir = Path(self.settings.output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        script_path = out_dir / f"{name}-script.json"
        timeline_path = out_dir / f"{name}-timeline.json"
        manifest_path = out_dir / f"{name}-job.json"

        manifest = RunManifest(
            source_url=page.url,
            output_name=name,
            voice_mode=self.settings.voice_mode,
        )
        manifest.record("run", "started")
        self._write_manifest(manifest, manifest_path)
        logger.info(f"[{manifest.run_id}] Narration run for {page.url} -> {name}")

        try:
            manifest.record("script", "started")
            script = await self.script_generator.generate(page)
            save_script(script, script_path)
            manifest.record("script", "completed", f"{script.word_count} words")
            self._write_manifest(manifest, manifest_path)

            narration = None
            if self.settings.voice_enabled:
                manifest.record("voice", "started")
                audio_path = out_dir / f"{name}-voice.mp3"
                try:
                    narration = await self.generate_voice_with_fallback(
                        script.narration_segments, str(audio_path)
                    )
                    manifest.record(
                        "voice", "completed",
                        f"{narration.engine_used.value}, {narration.total_duration_ms}ms",
                    )
                except SynthesisError as e:
                    logger.warning(f"[{manifest.run_id}] Voice failed, continuing silent: {e}")
                    manifest.record("voice", "degraded", str(e))
            else:
                manifest.record("voice", "skipped", "voice disabled")
            self._write_manifest(manifest, manifest_path)

            manifest.record("schedule", "started")
            schedule = self._schedule(script, narration)
            handoff = RenderHandoff(
                scene_slots=[slot.value for slot in SCENE_SLOTS],
                scene_frames=schedule.scene_frames,
                voice_start_frame=schedule.voice_start_frame,
                total_frames=schedule.total_frames,
                fps=schedule.fps,
                audio_src=narration.artifact_path if narration else None,
                timing_exact=bool(narration and narration.timing_exact),
                content=script.content_fields(),
            )
            timeline_path.write_text(handoff.model_dump_json(by_alias=True, indent=2))
            manifest.record("schedule", "completed", f"{schedule.total_frames} frames")

        except NarrationError as e:
            logger.error(f"[{manifest.run_id}] Run failed: {e}")
            manifest.status = RunStatus.FAILED
            manifest.error = str(e)
            manifest.finished_at = datetime.now(timezone.utc)
            manifest.record("run", "failed", str(e))
            self._write_manifest(manifest, manifest_path)
            raise

        manifest.status = RunStatus.COMPLETED
        manifest.finished_at = datetime.now(timezone.utc)
        manifest.timing_source = schedule.timing_source.value
        manifest.timing_exact = handoff.timing_exact
        if narration:
            manifest.engine_used = narration.engine_used
            manifest.audio_path = narration.artifact_path
        manifest.record("run", "completed")
        self._write_manifest(manifest, manifest_path)
        logger.info(f"[{manifest.run_id}] Completed: {timeline_path}")

        return PipelineResult(
            script=script,
            narration=narration,
            schedule=schedule,
            handoff=handoff,
            manifest=manifest,
            script_path=str(script_path),
            timeline_path=str(timeline_path),
            manifest_path=str(manifest_path),
        )

    async def generate_voice_with_fallback(
        self,
        segments: list[str],
        output_path: str,
    ) -> AssembledNarration:
        """
        Assemble narration with the requested engine, or each available engine
        in priority order until one succeeds.

        Raises:
            EngineUnavailableError: If no engine is configured
            SynthesisError: If every candidate engine failed
        """
        if self.settings.voice_engine is not None:
            candidates = [self.voice.select_engine(self.settings.voice_engine)]
        else:
            candidates = self.voice.available_engines()
        if not candidates:
            raise EngineUnavailableError("No TTS engine configured")

        failures = []
        last_error: Optional[SynthesisError] = None
        for name in candidates:
            try:
                return await self.assembler.build(
                    segments, output_path, self.settings.voice_mode, engine=name
                )
            except SynthesisError as e:
                logger.warning(f"{name.value} failed: {e}")
                failures.append(f"{name.value}: {e}")
                last_error = e

        raise SynthesisError("All voice engines failed: " + " | ".join(failures)) from last_error

    def _schedule(
        self,
        script: NarrationScript,
        narration: Optional[AssembledNarration],
    ) -> SceneSchedule:
        if narration is not None:
            return self.scheduler.from_durations(narration.segment_durations_ms)

        timeline = self.settings.timeline
        nominal = (
            timeline.lead_in_frames
            + ms_to_frames(estimate_narration_duration_ms(script.narration), timeline.fps)
            + timeline.closing_hold_frames
        )
        return self.scheduler.from_weights(script.scene_weights, nominal_frames=nominal)

    @staticmethod
    def _write_manifest(manifest: RunManifest, path: Path) -> None:
        path.write_text(manifest.model_dump_json(by_alias=True, indent=2))
