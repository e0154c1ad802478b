"""
Narration pipeline configuration.

Everything the core consumes is resolved from the environment once, at process
start, into plain pydantic objects that are passed into constructors.
"""
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

# Service settings
SERVICE_NAME = "narration-pipeline"
SERVICE_VERSION = "1.0.0"
SERVICE_PORT = int(os.getenv("PORT", 6010))

# Paths
BASE_DIR = Path(__file__).parent.parent
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "/tmp/narration-pipeline/output"))
SCRATCH_DIR = Path(os.getenv("SCRATCH_DIR", "/tmp/narration-pipeline/scratch"))

# FFmpeg settings
FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
FFPROBE_PATH = os.getenv("FFPROBE_PATH", "ffprobe")


class VoiceEngineName(str, Enum):
    """Supported speech engines, in auto-detect priority order."""
    ELEVENLABS = "elevenlabs"
    OPENAI = "openai"
    REPLICATE = "replicate"
    CHATTERBOX = "chatterbox"


ENGINE_PRIORITY = [
    VoiceEngineName.ELEVENLABS,
    VoiceEngineName.OPENAI,
    VoiceEngineName.REPLICATE,
    VoiceEngineName.CHATTERBOX,
]


class VoiceMode(str, Enum):
    """One TTS call per narration segment, or one call for the whole script."""
    SEGMENTED = "segmented"
    SINGLE = "single"


class EngineCredentials(BaseModel):
    """Credentials for every supported engine. Missing means unavailable."""
    elevenlabs_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    replicate_api_token: Optional[str] = None
    hf_token: Optional[str] = None


class SpaceEndpoint(BaseModel):
    """One interchangeable Gradio endpoint for the community engine."""
    url: str
    api_name: str = Field(default="generate_tts_audio", alias="apiName")
    param_count: int = Field(default=6, alias="paramCount")

    class Config:
        populate_by_name = True


DEFAULT_CHATTERBOX_SPACES = [
    SpaceEndpoint(url="https://resembleai-chatterbox.hf.space", param_count=7),
    SpaceEndpoint(url="https://freddyaboulton-chatterbox.hf.space", param_count=6),
    SpaceEndpoint(url="https://evalstate-chatterbox.hf.space", param_count=6),
]


class TimelineSettings(BaseModel):
    """Frame constants shared by the scheduler and the renderer."""
    fps: int = 30
    min_scene_frames: int = Field(default=96, alias="minSceneFrames")
    crossfade_frames: int = Field(default=12, alias="crossfadeFrames")
    voice_delay_frames: int = Field(default=15, alias="voiceDelayFrames")
    lead_in_frames: int = Field(default=15, alias="leadInFrames")
    closing_hold_frames: int = Field(default=30, alias="closingHoldFrames")
    fallback_duration_frames: int = Field(default=1380, alias="fallbackDurationFrames")
    voice_start_fraction: float = Field(default=0.6, alias="voiceStartFraction")

    class Config:
        populate_by_name = True


class NarrationSettings(BaseModel):
    """Top-level configuration object for one process."""
    credentials: EngineCredentials = Field(default_factory=EngineCredentials)
    chatterbox_spaces: list[SpaceEndpoint] = Field(
        default_factory=lambda: list(DEFAULT_CHATTERBOX_SPACES)
    )
    # None = auto-detect by credential; voice_enabled=False skips synthesis
    voice_engine: Optional[VoiceEngineName] = None
    voice_enabled: bool = True
    voice_mode: VoiceMode = VoiceMode.SINGLE
    master_audio: bool = True
    timeline: TimelineSettings = Field(default_factory=TimelineSettings)
    output_dir: Path = OUTPUT_DIR
    scratch_dir: Path = SCRATCH_DIR
    ffmpeg_path: str = FFMPEG_PATH
    ffprobe_path: str = FFPROBE_PATH
    script_model: str = "gpt-4o"


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> NarrationSettings:
    """Build settings from environment variables."""
    credentials = EngineCredentials(
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY") or os.getenv("eleven_labs_api_key"),
        openai_api_key=os.getenv("OPENAI_API_KEY") or os.getenv("openai_api_key"),
        replicate_api_token=os.getenv("REPLICATE_API_TOKEN"),
        hf_token=os.getenv("HF_TOKEN") or os.getenv("HUGGINGFACE_TOKEN"),
    )

    raw_engine = os.getenv("VOICE_ENGINE", "auto").strip().lower()
    voice_enabled = raw_engine != "none"
    voice_engine = None
    if voice_enabled and raw_engine != "auto":
        voice_engine = VoiceEngineName(raw_engine)

    return NarrationSettings(
        credentials=credentials,
        voice_engine=voice_engine,
        voice_enabled=voice_enabled,
        voice_mode=VoiceMode(os.getenv("VOICE_MODE", VoiceMode.SINGLE.value)),
        master_audio=_env_flag("MASTER_AUDIO", True),
        script_model=os.getenv("SCRIPT_MODEL", "gpt-4o"),
    )


@lru_cache(maxsize=1)
def get_settings() -> NarrationSettings:
    """Get the process-wide settings instance."""
    return load_settings()
