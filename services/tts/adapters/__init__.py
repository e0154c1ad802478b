"""
Voice Engine Adapters
=====================
Adapter implementations for the supported speech engines.
"""

from .base import VoiceEngine
from .chatterbox import ChatterboxSpacesEngine
from .elevenlabs import ElevenLabsEngine
from .openai_tts import OpenAIEngine
from .replicate import ReplicateEngine

__all__ = [
    "VoiceEngine",
    "ChatterboxSpacesEngine",
    "ElevenLabsEngine",
    "OpenAIEngine",
    "ReplicateEngine",
]
