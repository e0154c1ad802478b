"""
Voice Synthesis Engine
======================
Front for the speech engine adapters: engine selection by credential,
adapter construction and per-segment synthesis.
"""

import asyncio
from typing import Optional

import httpx
from loguru import logger

from config.settings import ENGINE_PRIORITY, NarrationSettings, VoiceEngineName
from services.audio.media_tools import AudioToolkit, get_audio_toolkit
from shared.errors import EngineUnavailableError

from .adapters import (
    ChatterboxSpacesEngine,
    ElevenLabsEngine,
    OpenAIEngine,
    ReplicateEngine,
    VoiceEngine,
)
from .adapters.base import Sleep
from .models import SynthesisOptions, SynthesisResult


def create_voice_engine(
    name: VoiceEngineName,
    settings: NarrationSettings,
    toolkit: AudioToolkit,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Sleep = asyncio.sleep,
) -> VoiceEngine:
    """
    Build the adapter for one engine.

    Raises:
        EngineUnavailableError: If the engine has no credential configured
    """
    creds = settings.credentials
    common = {"transport": transport, "sleep": sleep}

    if name == VoiceEngineName.ELEVENLABS and creds.elevenlabs_api_key:
        return ElevenLabsEngine(creds.elevenlabs_api_key, toolkit, **common)
    if name == VoiceEngineName.OPENAI and creds.openai_api_key:
        # The OpenAI SDK carries its own transport; tests inject a client instead
        return OpenAIEngine(creds.openai_api_key, toolkit, sleep=sleep)
    if name == VoiceEngineName.REPLICATE and creds.replicate_api_token:
        return ReplicateEngine(creds.replicate_api_token, toolkit, **common)
    if name == VoiceEngineName.CHATTERBOX and settings.chatterbox_spaces:
        return ChatterboxSpacesEngine(
            settings.chatterbox_spaces, toolkit, hf_token=creds.hf_token, **common
        )

    raise EngineUnavailableError(f"No credential configured for voice engine '{name.value}'")


class VoiceSynthesisEngine:
    """
    Converts narration text into an mp3 artifact plus its duration.

    Usage:
        voice = VoiceSynthesisEngine(settings)
        result = await voice.synthesize("Meet Acme.", "/tmp/out.mp3")
    """

    def __init__(
        self,
        settings: NarrationSettings,
        toolkit: Optional[AudioToolkit] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        adapters: Optional[dict[VoiceEngineName, VoiceEngine]] = None,
    ):
        self.settings = settings
        self.toolkit = toolkit or get_audio_toolkit()
        self._transport = transport
        self._sleep = sleep
        self._adapters: dict[VoiceEngineName, VoiceEngine] = dict(adapters or {})

    def available_engines(self) -> list[VoiceEngineName]:
        """Engines with a usable credential, in priority order."""
        creds = self.settings.credentials
        configured = {
            VoiceEngineName.ELEVENLABS: bool(creds.elevenlabs_api_key),
            VoiceEngineName.OPENAI: bool(creds.openai_api_key),
            VoiceEngineName.REPLICATE: bool(creds.replicate_api_token),
            VoiceEngineName.CHATTERBOX: bool(self.settings.chatterbox_spaces),
        }
        return [
            name for name in ENGINE_PRIORITY
            if configured[name] or name in self._adapters
        ]

    def select_engine(self, requested: Optional[VoiceEngineName] = None) -> VoiceEngineName:
        """
        Pick the engine to use.

        An explicit request wins if it is configured; otherwise the first
        available engine in priority order.

        Raises:
            EngineUnavailableError: If nothing usable is configured
        """
        available = self.available_engines()
        requested = requested or self.settings.voice_engine

        if requested is not None:
            if requested not in available:
                raise EngineUnavailableError(
                    f"Voice engine '{requested.value}' requested but not configured"
                )
            return requested

        if not available:
            raise EngineUnavailableError(
                "No TTS engine configured. Set ELEVENLABS_API_KEY, OPENAI_API_KEY, "
                "REPLICATE_API_TOKEN, or configure chatterbox spaces."
            )
        return available[0]

    def get_adapter(self, name: VoiceEngineName) -> VoiceEngine:
        """Get (or lazily build) the adapter for an engine."""
        if name not in self._adapters:
            self._adapters[name] = create_voice_engine(
                name, self.settings, self.toolkit, self._transport, self._sleep
            )
        return self._adapters[name]

    def should_master(self, name: VoiceEngineName) -> bool:
        """Mastering runs unless disabled or the engine output is already mastered."""
        return self.settings.master_audio and not self.get_adapter(name).native_mastered

    async def synthesize(
        self,
        text: str,
        output_path: str,
        options: Optional[SynthesisOptions] = None,
    ) -> SynthesisResult:
        """
        Synthesize one text into an mp3 artifact.

        Raises:
            EngineUnavailableError: If no engine is configured
            SynthesisError: If the engine call fails
        """
        options = options or SynthesisOptions()
        name = self.select_engine(options.engine)
        adapter = self.get_adapter(name)

        logger.info(f"Synthesizing {len(text)} chars with {name.value}")
        result = await adapter.synthesize(text, output_path, options.voice_id)
        logger.info(
            f"{name.value} produced {result.artifact_path} "
            f"({result.duration_ms}ms{', estimated' if result.estimated else ''})"
        )
        return result

    async def synthesize_segments(
        self,
        texts: list[str],
        output_paths: list[str],
        options: Optional[SynthesisOptions] = None,
    ) -> list[SynthesisResult]:
        """
        Synthesize each segment into its own artifact, results in segment order.

        Engines that support it submit all segments up front and poll them
        together; the others are called one segment at a time.
        """
        if len(texts) != len(output_paths):
            raise ValueError("texts and output_paths must have the same length")

        options = options or SynthesisOptions()
        name = self.select_engine(options.engine)
        adapter = self.get_adapter(name)

        if adapter.supports_parallel:
            logger.info(f"Submitting {len(texts)} segments to {name.value} in parallel")
            return await adapter.synthesize_batch(texts, output_paths, options.voice_id)

        results = []
        for idx, (text, path) in enumerate(zip(texts, output_paths)):
            logger.info(f"Segment {idx + 1}/{len(texts)} via {name.value}: {text[:50]!r}")
            results.append(await adapter.synthesize(text, path, options.voice_id))
        return results
