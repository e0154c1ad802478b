"""
ElevenLabs Voice Engine
=======================
Synchronous request/response synthesis: one POST with the full text, mp3 back.
"""

from typing import Optional

from loguru import logger

from config.settings import VoiceEngineName

from ..models import SynthesisResult
from .base import VoiceEngine

ELEVENLABS_API = "https://api.elevenlabs.io/v1"

# "Daniel": deep British male, professional narration
DEFAULT_ELEVENLABS_VOICE = "onwK4e9ZLuTAKqWW03F9"


class ElevenLabsEngine(VoiceEngine):
    """ElevenLabs v3 text-to-speech."""

    name = VoiceEngineName.ELEVENLABS
    native_mastered = True

    def __init__(
        self,
        api_key: str,
        toolkit,
        stability: float = 0.5,
        similarity_boost: float = 0.75,
        **kwargs,
    ):
        super().__init__(toolkit, **kwargs)
        self.api_key = api_key
        self.stability = stability
        self.similarity_boost = similarity_boost

    async def synthesize(
        self,
        text: str,
        output_path: str,
        voice_id: Optional[str] = None,
    ) -> SynthesisResult:
        voice = voice_id or DEFAULT_ELEVENLABS_VOICE
        payload = {
            "text": text,
            "model_id": "eleven_v3",
            "voice_settings": {
                "stability": self.stability,
                "similarity_boost": self.similarity_boost,
                "style": 0.3,
                "use_speaker_boost": True,
            },
        }

        async with self._http() as client:
            response = await self._send_with_backoff(
                client,
                "POST",
                f"{ELEVENLABS_API}/text-to-speech/{voice}",
                params={"output_format": "mp3_44100_128"},
                headers={"xi-api-key": self.api_key, "Content-Type": "application/json"},
                json=payload,
            )
            self._raise_for_status(response, "text-to-speech")
            audio = response.content

        logger.info(f"ElevenLabs returned {len(audio)} bytes for {len(text)} chars")
        return await self._finalize([audio], output_path, text)
