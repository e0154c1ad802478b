"""
Chatterbox Voice Engine (HF Spaces)
===================================
Free community inference through interchangeable Gradio Spaces.

Each configured endpoint is tried in order. An endpoint that fails fast is
treated as down and the next one is tried. Only when every endpoint refuses
does synthesis fail, and the error says whether the backend was reachable
but rejected the work (quota or GPU capacity) or was simply unreachable.
"""

import json
import math
from typing import Optional

import httpx
from loguru import logger

from config.settings import SpaceEndpoint, VoiceEngineName
from shared.errors import (
    EndpointsUnreachableError,
    EngineRejectedError,
    JobFailedError,
    PollTimeoutError,
    SynthesisError,
)
from shared.text import chunk_text

from ..models import SynthesisResult
from .base import VoiceEngine

CHUNK_CHARS = 290
LIVENESS_DELAY_SECONDS = 3.0
POLL_INTERVAL_SECONDS = 2.0
POLL_TIMEOUT_SECONDS = 180.0

# HTTP statuses that mean "reachable, but not accepting work from us"
REJECTION_STATUSES = {402, 403, 429}


class SpaceRejected(Exception):
    """An endpoint answered with an explicit generation error."""


class ChatterboxSpacesEngine(VoiceEngine):
    """Resemble AI Chatterbox via Hugging Face Spaces (WAV output)."""

    name = VoiceEngineName.CHATTERBOX
    native_format = "wav"

    def __init__(
        self,
        spaces: list[SpaceEndpoint],
        toolkit,
        hf_token: Optional[str] = None,
        chunk_chars: int = CHUNK_CHARS,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        liveness_delay_seconds: float = LIVENESS_DELAY_SECONDS,
        **kwargs,
    ):
        super().__init__(toolkit, **kwargs)
        self.spaces = list(spaces)
        self.hf_token = hf_token
        self.chunk_chars = chunk_chars
        self.poll_interval_seconds = poll_interval_seconds
        self.liveness_delay_seconds = liveness_delay_seconds
        self.max_polls = max(1, math.ceil(poll_timeout_seconds / poll_interval_seconds))

    async def synthesize(
        self,
        text: str,
        output_path: str,
        voice_id: Optional[str] = None,
    ) -> SynthesisResult:
        chunks = chunk_text(text, self.chunk_chars)
        audio_chunks = []

        headers = {"Authorization": f"Bearer {self.hf_token}"} if self.hf_token else {}
        async with self._http(headers=headers) as client:
            for idx, chunk in enumerate(chunks):
                if len(chunks) > 1:
                    logger.info(f"Chatterbox chunk {idx + 1}/{len(chunks)}: {chunk[:50]!r}")

                space, api_url, event_id, body = await self._open_job(client, chunk)
                if idx == 0:
                    logger.info(f"Using space: {space.url}")

                audio_url = await self._poll_result(client, api_url, event_id, body, idx)
                try:
                    response = await client.get(audio_url)
                except httpx.HTTPError as e:
                    raise SynthesisError(f"Failed to download Chatterbox audio: {e}", self.name.value) from e
                self._raise_for_status(response, "audio download")
                audio_chunks.append(response.content)

        return await self._finalize(audio_chunks, output_path, text)

    async def _open_job(
        self,
        client: httpx.AsyncClient,
        text: str,
    ) -> tuple[SpaceEndpoint, str, str, str]:
        """
        Find the first endpoint that accepts the job and is alive.

        Returns:
            (endpoint, api_url, event_id, first poll body)
        """
        rejected: list[str] = []
        down: list[str] = []

        for space in self.spaces:
            api_url = f"{space.url}/gradio_api/call/{space.api_name}"
            data = [text, None, 0.5, 0.8, 0, 0.5]
            if space.param_count == 7:
                data.append(False)

            try:
                response = await client.post(api_url, json={"data": data})
            except httpx.HTTPError as e:
                logger.warning(f"Space {space.url} unreachable, trying next...")
                down.append(f"{space.url}: {e.__class__.__name__}")
                continue

            if response.status_code in REJECTION_STATUSES:
                logger.warning(f"Space {space.url} refused ({response.status_code}), trying next...")
                rejected.append(f"{space.url}: HTTP {response.status_code}")
                continue
            if not response.is_success:
                logger.warning(f"Space {space.url} returned {response.status_code}, trying next...")
                down.append(f"{space.url}: HTTP {response.status_code}")
                continue

            try:
                event_id = response.json().get("event_id")
            except (ValueError, AttributeError):
                event_id = None
            if not event_id:
                down.append(f"{space.url}: no event id")
                continue

            # Quick liveness check before committing to the full poll
            await self._sleep(self.liveness_delay_seconds)
            try:
                check = await client.get(f"{api_url}/{event_id}")
            except httpx.HTTPError as e:
                logger.warning(f"Space {space.url} unreachable, trying next...")
                down.append(f"{space.url}: {e.__class__.__name__}")
                continue

            if "event: error" in check.text:
                logger.warning(f"Space {space.url} returned error, trying next...")
                rejected.append(f"{space.url}: {_error_detail(check.text)}")
                continue

            return space, api_url, event_id, check.text

        if rejected:
            raise EngineRejectedError(
                "Chatterbox spaces are reachable but refused generation "
                "(quota or GPU capacity exhausted; wait, or set HF_TOKEN for a higher quota): "
                + "; ".join(rejected + down),
                self.name.value,
            )
        raise EndpointsUnreachableError(
            "All Chatterbox HuggingFace Spaces are currently unavailable. Try again later: "
            + "; ".join(down),
            self.name.value,
        )

    async def _poll_result(
        self,
        client: httpx.AsyncClient,
        api_url: str,
        event_id: str,
        body: str,
        job_no: int,
    ) -> str:
        base_url = api_url.split("/gradio_api/")[0]
        sse_url = f"{api_url}/{event_id}"

        for _ in range(self.max_polls):
            try:
                audio_url = parse_sse_result(body, base_url)
            except SpaceRejected as e:
                raise JobFailedError(
                    f"Chatterbox generation error: {e}", self.name.value, failed_jobs=[job_no]
                ) from e
            if audio_url:
                return audio_url

            await self._sleep(self.poll_interval_seconds)
            try:
                body = (await client.get(sse_url)).text
            except httpx.HTTPError as e:
                logger.debug(f"Chatterbox poll failed ({e}); retrying")
                body = ""

        try:
            audio_url = parse_sse_result(body, base_url)
        except SpaceRejected as e:
            raise JobFailedError(
                f"Chatterbox generation error: {e}", self.name.value, failed_jobs=[job_no]
            ) from e
        if audio_url:
            return audio_url

        raise PollTimeoutError(
            f"Chatterbox timed out after {self.max_polls} polls",
            self.name.value,
            pending_jobs=[job_no],
        )


def parse_sse_result(body: str, base_url: str) -> Optional[str]:
    """
    Extract the audio URL from a Gradio SSE body.

    Returns:
        Audio URL, or None when the job has not completed yet

    Raises:
        SpaceRejected: If the stream carries an error event
    """
    lines = body.split("\n")
    for i, line in enumerate(lines):
        line = line.strip()
        if line == "event: error":
            detail = lines[i + 1].strip() if i + 1 < len(lines) else ""
            raise SpaceRejected(detail or "unknown error")
        if line != "event: complete" or i + 1 >= len(lines):
            continue

        data_line = lines[i + 1].strip()
        if not data_line.startswith("data: "):
            continue
        try:
            data = json.loads(data_line[len("data: "):])
        except json.JSONDecodeError:
            continue
        if not isinstance(data, list) or not data or not data[0]:
            continue

        audio = data[0]
        if isinstance(audio, str):
            return audio
        if not isinstance(audio, dict):
            raise SpaceRejected(f"unexpected result payload: {audio!r}")
        if audio.get("url"):
            return audio["url"]
        if audio.get("path"):
            return f"{base_url}/gradio_api/file={audio['path']}"
    return None


def _error_detail(body: str) -> str:
    try:
        parse_sse_result(body, "")
    except SpaceRejected as e:
        return str(e)
    return "error event"
