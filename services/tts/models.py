"""
TTS Service Models
==================
Data models for synthesis requests, results and async job states.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from config.settings import VoiceEngineName


class JobState(str, Enum):
    """Lifecycle of an asynchronous synthesis job."""
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELED)


class SynthesisOptions(BaseModel):
    """Per-call engine and voice overrides."""
    engine: Optional[VoiceEngineName] = None
    voice_id: Optional[str] = Field(None, alias="voiceId")

    class Config:
        populate_by_name = True


class SynthesisResult(BaseModel):
    """One synthesized artifact and its duration."""
    artifact_path: str = Field(alias="artifactPath")
    duration_ms: int = Field(alias="durationMs", ge=0)
    engine: VoiceEngineName
    # True when duration came from the words-per-minute approximation
    estimated: bool = False

    class Config:
        populate_by_name = True
