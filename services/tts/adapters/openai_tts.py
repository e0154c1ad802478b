"""
OpenAI Voice Engine
===================
Synchronous synthesis through the OpenAI speech endpoint.
"""

from typing import Optional

import openai
from loguru import logger
from openai import AsyncOpenAI

from config.settings import VoiceEngineName
from shared.errors import RateLimitExceededError, SynthesisError

from ..models import SynthesisResult
from .base import VoiceEngine

DEFAULT_OPENAI_VOICE = "onyx"

NARRATION_INSTRUCTIONS = (
    "Speak in a professional, confident, slightly warm tone suitable for a "
    "product demo narration video. Natural pacing, not rushed."
)


class OpenAIEngine(VoiceEngine):
    """OpenAI gpt-4o-mini-tts."""

    name = VoiceEngineName.OPENAI

    def __init__(
        self,
        api_key: str,
        toolkit,
        client: Optional[AsyncOpenAI] = None,
        model_id: str = "gpt-4o-mini-tts",
        **kwargs,
    ):
        super().__init__(toolkit, **kwargs)
        # Retries are handled by the backoff loop below
        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=0, timeout=self.timeout_seconds)
        self.model_id = model_id

    async def synthesize(
        self,
        text: str,
        output_path: str,
        voice_id: Optional[str] = None,
    ) -> SynthesisResult:
        voice = voice_id or DEFAULT_OPENAI_VOICE

        for attempt in range(self.rate_limit_retries + 1):
            try:
                response = await self.client.audio.speech.create(
                    model=self.model_id,
                    voice=voice,
                    input=text,
                    instructions=NARRATION_INSTRUCTIONS,
                    response_format="mp3",
                )
                break
            except openai.RateLimitError as e:
                if attempt == self.rate_limit_retries:
                    raise RateLimitExceededError(
                        f"openai still rate limited after {self.rate_limit_retries} retries",
                        self.name.value,
                    ) from e
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(f"openai rate limited, retrying in {delay:.1f}s")
                await self._sleep(delay)
            except openai.APIStatusError as e:
                raise SynthesisError(f"OpenAI TTS error {e.status_code}: {e.message}", self.name.value) from e
            except openai.APIError as e:
                raise SynthesisError(f"OpenAI TTS unreachable: {e}", self.name.value) from e

        audio = response.content
        logger.info(f"OpenAI returned {len(audio)} bytes for {len(text)} chars")
        return await self._finalize([audio], output_path, text)
