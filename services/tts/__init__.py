"""
TTS Service
===========
Text-to-speech with interchangeable engines behind one adapter interface.
"""

from .adapters.base import VoiceEngine
from .engine import VoiceSynthesisEngine, create_voice_engine
from .models import JobState, SynthesisOptions, SynthesisResult

__all__ = [
    "VoiceEngine",
    "VoiceSynthesisEngine",
    "create_voice_engine",
    "JobState",
    "SynthesisOptions",
    "SynthesisResult",
]
