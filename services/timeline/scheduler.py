"""
Timeline Scheduler
==================
Converts narration timing into the frame schedule the renderer consumes.

Two sources of timing:
- exact: measured per-segment durations from the assembled narration
- weighted: per-segment word-count weights, when there is no audio

Consecutive scenes overlap by a fixed crossfade window. In exact mode that
window is added to every scene but the last, so a transition's visual
midpoint lands where the next segment's voice begins.
"""

import math
from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from config.settings import TimelineSettings


class TimingSource(str, Enum):
    EXACT = "exact"
    WEIGHTED = "weighted"


class SceneSchedule(BaseModel):
    """Ordered scene frame counts plus voice offset and composition length."""
    scene_frames: list[int] = Field(alias="sceneFrames")
    voice_start_frame: int = Field(alias="voiceStartFrame", ge=0)
    total_frames: int = Field(alias="totalFrames", ge=0)
    fps: int = 30
    timing_source: TimingSource = Field(alias="timingSource")

    class Config:
        populate_by_name = True

    @property
    def total_seconds(self) -> float:
        return self.total_frames / self.fps


def ms_to_frames(duration_ms: int, fps: int) -> int:
    """Milliseconds to frames, rounded up."""
    return math.ceil(duration_ms * fps / 1000)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class TimelineScheduler:
    """
    Usage:
        scheduler = TimelineScheduler(settings.timeline)
        schedule = scheduler.schedule(durations_ms=narration.segment_durations_ms)
    """

    def __init__(self, settings: Optional[TimelineSettings] = None):
        self.settings = settings or TimelineSettings()

    def schedule(
        self,
        durations_ms: Optional[list[int]] = None,
        weights: Optional[list[float]] = None,
        nominal_frames: Optional[int] = None,
    ) -> SceneSchedule:
        """Schedule from exact durations when present, otherwise from weights."""
        if durations_ms is not None:
            return self.from_durations(durations_ms)
        if weights is not None:
            return self.from_weights(weights, nominal_frames)
        raise ValueError("Either durations_ms or weights is required")

    def from_durations(self, durations_ms: list[int]) -> SceneSchedule:
        """
        Schedule from measured per-segment durations.

        Total length is lead-in + narration + closing hold, computed from the
        raw durations rather than the padded scenes, so the composition is
        never shorter than the audio.
        """
        if not durations_ms:
            raise ValueError("At least one segment duration is required")
        if any(d < 0 for d in durations_ms):
            raise ValueError("Segment durations must be non-negative")

        s = self.settings
        last = len(durations_ms) - 1
        base = [ms_to_frames(d, s.fps) for d in durations_ms]

        frames = []
        for idx, raw in enumerate(base):
            padded = raw
            if idx < last:
                padded += s.crossfade_frames
            if idx == 0:
                padded += s.voice_delay_frames
            if idx == last:
                padded += s.closing_hold_frames
            frames.append(max(padded, s.min_scene_frames))

        total = s.lead_in_frames + sum(base) + s.closing_hold_frames
        logger.debug(f"Exact schedule: {frames} ({total} frames)")

        return SceneSchedule(
            scene_frames=frames,
            voice_start_frame=s.voice_delay_frames,
            total_frames=total,
            fps=s.fps,
            timing_source=TimingSource.EXACT,
        )

    def from_weights(
        self,
        weights: list[float],
        nominal_frames: Optional[int] = None,
    ) -> SceneSchedule:
        """
        Schedule proportionally to weights over a nominal composition length.

        The renderer reclaims one crossfade per transition from adjacent
        scenes, so those frames are added back before distributing.
        """
        if not weights:
            raise ValueError("At least one weight is required")
        if any(w < 0 for w in weights):
            raise ValueError("Weights must be non-negative")

        s = self.settings
        nominal = nominal_frames if nominal_frames is not None else s.fallback_duration_frames
        available = nominal + (len(weights) - 1) * s.crossfade_frames

        weight_total = sum(weights)
        if weight_total == 0:
            weights = [1] * len(weights)
            weight_total = len(weights)

        frames = [
            max(_round_half_up(w / weight_total * available), s.min_scene_frames)
            for w in weights
        ]
        voice_start = _round_half_up(frames[0] * s.voice_start_fraction)
        logger.debug(f"Weighted schedule: {frames} ({nominal} frames)")

        return SceneSchedule(
            scene_frames=frames,
            voice_start_frame=voice_start,
            total_frames=nominal,
            fps=s.fps,
            timing_source=TimingSource.WEIGHTED,
        )
