"""
Base Voice Engine
=================
Abstract base class for speech engine adapters.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx
from loguru import logger

from config.settings import VoiceEngineName
from services.audio.media_tools import AudioToolkit
from shared.errors import RateLimitExceededError, SynthesisError

from ..models import SynthesisResult

Sleep = Callable[[float], Awaitable[None]]


class VoiceEngine(ABC):
    """
    Abstract base class for speech engine adapters.

    Each adapter implements one engine's protocol behind the same
    synthesize(text) -> artifact + duration capability. The final artifact
    is always mp3 at the pipeline sample rate; engines whose native output
    is WAV are transcoded here and the intermediate is deleted.
    """

    name: VoiceEngineName
    native_format = "mp3"
    # Output already broadcast quality; mastering is skipped
    native_mastered = False
    # Cheap concurrent job creation (see synthesize_batch)
    supports_parallel = False

    def __init__(
        self,
        toolkit: AudioToolkit,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        timeout_seconds: float = 120.0,
        rate_limit_retries: int = 3,
        backoff_seconds: float = 2.0,
    ):
        self.toolkit = toolkit
        self._transport = transport
        self._sleep = sleep
        self.timeout_seconds = timeout_seconds
        self.rate_limit_retries = rate_limit_retries
        self.backoff_seconds = backoff_seconds

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        output_path: str,
        voice_id: Optional[str] = None,
    ) -> SynthesisResult:
        """
        Synthesize text into a single mp3 artifact.

        Raises:
            SynthesisError: If the engine call fails
        """

    async def synthesize_batch(
        self,
        texts: list[str],
        output_paths: list[str],
        voice_id: Optional[str] = None,
    ) -> list[SynthesisResult]:
        """Synthesize several texts; results are in input order."""
        results = []
        for text, path in zip(texts, output_paths):
            results.append(await self.synthesize(text, path, voice_id))
        return results

    def _http(self, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
            **kwargs,
        )

    async def _send_with_backoff(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send a request, backing off and retrying on 429 a bounded number of times.

        Raises:
            SynthesisError: If the engine is unreachable
            RateLimitExceededError: If 429s outlast the retry budget
        """
        for attempt in range(self.rate_limit_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.HTTPError as e:
                raise SynthesisError(f"{self.name.value} unreachable: {e}", self.name.value) from e

            if response.status_code != 429:
                return response

            if attempt == self.rate_limit_retries:
                break

            delay = self._retry_delay(response, attempt)
            logger.warning(
                f"{self.name.value} rate limited, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{self.rate_limit_retries})"
            )
            await self._sleep(delay)

        raise RateLimitExceededError(
            f"{self.name.value} still rate limited after {self.rate_limit_retries} retries",
            self.name.value,
        )

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass
        return self.backoff_seconds * (2 ** attempt)

    def _raise_for_status(self, response: httpx.Response, context: str) -> None:
        if response.is_success:
            return
        raise SynthesisError(
            f"{self.name.value} {context} error {response.status_code}: {response.text[:300]}",
            self.name.value,
        )

    async def _finalize(
        self,
        chunks: list[bytes],
        output_path: str,
        text: str,
    ) -> SynthesisResult:
        """
        Write engine audio to output_path as mp3 and measure it.

        WAV chunks are written as segment-indexed intermediates, joined,
        transcoded and removed.
        """
        out_path = Path(output_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)

        if self.native_format == "mp3":
            if len(chunks) != 1:
                raise SynthesisError(f"{self.name.value} returned {len(chunks)} mp3 parts", self.name.value)
            out_path.write_bytes(chunks[0])
        else:
            chunk_paths = [out_path.with_name(f"{out_path.stem}_chunk{i:02d}.wav") for i in range(len(chunks))]
            wav_path = out_path.with_suffix(".wav")
            try:
                for path, data in zip(chunk_paths, chunks):
                    path.write_bytes(data)
                await self.toolkit.concat_wavs([str(p) for p in chunk_paths], str(wav_path))
                await self.toolkit.to_mp3(str(wav_path), str(out_path))
            finally:
                for path in [*chunk_paths, wav_path]:
                    path.unlink(missing_ok=True)

        duration_ms, estimated = await self.toolkit.probe_duration_ms(str(out_path), text)
        return SynthesisResult(
            artifact_path=str(out_path),
            duration_ms=duration_ms,
            engine=self.name,
            estimated=estimated,
        )

    def get_engine_info(self) -> dict:
        return {
            "engine": self.name.value,
            "native_format": self.native_format,
            "native_mastered": self.native_mastered,
            "supports_parallel": self.supports_parallel,
        }
