"""
Audio assembly models.
"""

from pydantic import BaseModel, Field, model_validator

from config.settings import VoiceEngineName


class AssembledNarration(BaseModel):
    """The single final narration track and its per-segment timing."""
    artifact_path: str = Field(alias="artifactPath")
    total_duration_ms: int = Field(alias="totalDurationMs", ge=0)
    segment_durations_ms: list[int] = Field(alias="segmentDurationsMs")
    engine_used: VoiceEngineName = Field(alias="engineUsed")
    # False when any segment duration is an estimate or a proportional split
    timing_exact: bool = Field(default=True, alias="timingExact")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def _durations_sum_to_total(self) -> "AssembledNarration":
        if sum(self.segment_durations_ms) != self.total_duration_ms:
            raise ValueError(
                f"Segment durations sum to {sum(self.segment_durations_ms)}ms, "
                f"expected {self.total_duration_ms}ms"
            )
        if any(d < 0 for d in self.segment_durations_ms):
            raise ValueError("Segment durations must be non-negative")
        return self
