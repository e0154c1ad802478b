"""
Segment Assembler

Turns narration segments into one mastered narration track with known
per-segment durations.

Two modes:
- segmented: one synthesis per segment, measured individually, decoded to
  WAV and joined with a click-masking crossfade.
- single: one synthesis over the joined text; per-segment durations are a
  word-count proportional split of the measured total.

Mastering runs once, on the final track only.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger

from config.settings import VoiceEngineName, VoiceMode
from services.tts import SynthesisOptions, VoiceSynthesisEngine
from shared.text import count_words

from .media_tools import CLICK_CROSSFADE_MS, AudioToolkit
from .models import AssembledNarration


def split_duration_by_words(total_ms: int, segments: list[str]) -> list[int]:
    """
    Split a measured total across segments in proportion to word count.

    Every segment but the last is floored; the last absorbs the remainder, so
    the parts always sum to total_ms exactly. Segments with no words at all
    split evenly.
    """
    if not segments:
        return []

    weights = [count_words(s) for s in segments]
    if sum(weights) == 0:
        weights = [1] * len(segments)
    weight_total = sum(weights)

    parts = [total_ms * w // weight_total for w in weights[:-1]]
    parts.append(total_ms - sum(parts))
    return parts


def overlap_adjusted_durations(durations_ms: list[int], crossfade_ms: int) -> list[int]:
    """
    Per-segment durations as heard in a crossfade-joined track.

    Each boundary overlaps the neighbouring segments by crossfade_ms, so the
    joined track is that much shorter per boundary. The overlap is charged to
    the segment before the boundary; the last segment keeps its full length.
    """
    if not durations_ms:
        return []
    adjusted = [max(0, d - crossfade_ms) for d in durations_ms[:-1]]
    adjusted.append(durations_ms[-1])
    return adjusted


class SegmentAssembler:
    """
    Drives synthesis for a whole narration and stitches the result.

    Usage:
        assembler = SegmentAssembler(voice, toolkit, settings.scratch_dir)
        narration = await assembler.assemble(script.narration_segments, "out/voice.mp3")
    """

    def __init__(
        self,
        voice: VoiceSynthesisEngine,
        toolkit: AudioToolkit,
        scratch_dir: Path,
        crossfade_ms: int = CLICK_CROSSFADE_MS,
    ):
        self.voice = voice
        self.toolkit = toolkit
        self.scratch_dir = Path(scratch_dir)
        self.crossfade_ms = crossfade_ms

    async def build(
        self,
        segments: list[str],
        output_path: str,
        mode: VoiceMode = VoiceMode.SEGMENTED,
        engine: Optional[VoiceEngineName] = None,
        voice_id: Optional[str] = None,
    ) -> AssembledNarration:
        """Assemble in the requested mode."""
        if mode == VoiceMode.SINGLE:
            return await self.assemble_single_call(segments, output_path, engine, voice_id)
        return await self.assemble(segments, output_path, engine, voice_id)

    async def assemble(
        self,
        segments: list[str],
        output_path: str,
        engine: Optional[VoiceEngineName] = None,
        voice_id: Optional[str] = None,
    ) -> AssembledNarration:
        """
        One synthesis per segment, crossfade-joined into output_path.

        Any segment failure aborts the whole assembly; every intermediate is
        removed on both paths.

        Raises:
            EngineUnavailableError: If no engine is configured
            SynthesisError: If any segment fails to synthesize
            AssemblyError: If decoding, joining or encoding fails
        """
        if not segments:
            raise ValueError("No narration segments to assemble")

        name = self.voice.select_engine(engine)
        options = SynthesisOptions(engine=name, voice_id=voice_id)
        out_path = Path(output_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="narration-", dir=self.scratch_dir))
        succeeded = False
        try:
            segment_paths = [str(work_dir / f"segment_{i:02d}.mp3") for i in range(len(segments))]
            results = await self.voice.synthesize_segments(segments, segment_paths, options)

            wav_paths = []
            for idx, result in enumerate(results):
                wav_path = str(work_dir / f"segment_{idx:02d}.wav")
                await self.toolkit.to_wav(result.artifact_path, wav_path)
                wav_paths.append(wav_path)

            joined_path = str(work_dir / "joined.wav")
            await self.toolkit.crossfade_concat(wav_paths, joined_path, self.crossfade_ms)
            await self.toolkit.to_mp3(joined_path, str(out_path))

            if self.voice.should_master(name):
                logger.info("Mastering narration track")
                await self.toolkit.master(str(out_path))

            durations = overlap_adjusted_durations(
                [r.duration_ms for r in results], self.crossfade_ms
            )
            narration = AssembledNarration(
                artifact_path=str(out_path),
                total_duration_ms=sum(durations),
                segment_durations_ms=durations,
                engine_used=name,
                timing_exact=not any(r.estimated for r in results),
            )
            succeeded = True
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
            if not succeeded:
                out_path.unlink(missing_ok=True)

        logger.info(
            f"Assembled {len(segments)} segments ({narration.total_duration_ms}ms) "
            f"with {name.value} -> {out_path}"
        )
        return narration

    async def assemble_single_call(
        self,
        segments: list[str],
        output_path: str,
        engine: Optional[VoiceEngineName] = None,
        voice_id: Optional[str] = None,
    ) -> AssembledNarration:
        """
        One synthesis over the whole narration; segment timing is estimated.

        Raises:
            EngineUnavailableError: If no engine is configured
            SynthesisError: If the synthesis call fails
            AssemblyError: If mastering fails
        """
        if not segments:
            raise ValueError("No narration segments to assemble")

        name = self.voice.select_engine(engine)
        options = SynthesisOptions(engine=name, voice_id=voice_id)
        out_path = Path(output_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)

        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix="narration-", dir=self.scratch_dir))
        succeeded = False
        try:
            result = await self.voice.synthesize(
                " ".join(s.strip() for s in segments), str(work_dir / "narration.mp3"), options
            )
            shutil.move(result.artifact_path, out_path)

            if self.voice.should_master(name):
                logger.info("Mastering narration track")
                await self.toolkit.master(str(out_path))

            narration = AssembledNarration(
                artifact_path=str(out_path),
                total_duration_ms=result.duration_ms,
                segment_durations_ms=split_duration_by_words(result.duration_ms, segments),
                engine_used=name,
                timing_exact=False,
            )
            succeeded = True
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)
            if not succeeded:
                out_path.unlink(missing_ok=True)

        logger.info(f"Single-call narration ({narration.total_duration_ms}ms) with {name.value} -> {out_path}")
        return narration
