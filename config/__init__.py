"""Narration pipeline configuration."""

from config.settings import (
    ENGINE_PRIORITY,
    EngineCredentials,
    NarrationSettings,
    SpaceEndpoint,
    TimelineSettings,
    VoiceEngineName,
    VoiceMode,
    get_settings,
    load_settings,
)

__all__ = [
    "ENGINE_PRIORITY",
    "EngineCredentials",
    "NarrationSettings",
    "SpaceEndpoint",
    "TimelineSettings",
    "VoiceEngineName",
    "VoiceMode",
    "get_settings",
    "load_settings",
]
