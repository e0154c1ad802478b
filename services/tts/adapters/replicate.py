"""
Replicate Voice Engine
======================
Asynchronous job-based synthesis through Replicate predictions.

- Text above the character ceiling is chunked on sentence boundaries,
  one prediction per chunk.
- Single calls ask Replicate to hold the request until completion
  ("Prefer: wait"); anything still running is polled until a terminal state.
- Successive submissions are spaced by a fixed delay, and 429 responses are
  retried with backoff a bounded number of times.
- Parallel mode submits every job first, then polls all outstanding jobs in
  one shared loop.
"""

import math
from typing import Optional

import httpx
from loguru import logger

from config.settings import VoiceEngineName
from shared.errors import JobFailedError, PollTimeoutError, SynthesisError
from shared.text import chunk_text

from ..models import JobState, SynthesisResult
from .base import VoiceEngine

REPLICATE_API = "https://api.replicate.com/v1"
DEFAULT_REPLICATE_MODEL = "resemble-ai/chatterbox"

CHUNK_CHARS = 500
SUBMIT_DELAY_SECONDS = 1.0
POLL_INTERVAL_SECONDS = 2.0
POLL_TIMEOUT_SECONDS = 180.0
WAIT_HINT_SECONDS = 60


class ReplicateEngine(VoiceEngine):
    """Replicate-hosted TTS model (WAV output)."""

    name = VoiceEngineName.REPLICATE
    native_format = "wav"
    supports_parallel = True

    def __init__(
        self,
        api_token: str,
        toolkit,
        model: str = DEFAULT_REPLICATE_MODEL,
        chunk_chars: int = CHUNK_CHARS,
        submit_delay_seconds: float = SUBMIT_DELAY_SECONDS,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
        poll_timeout_seconds: float = POLL_TIMEOUT_SECONDS,
        **kwargs,
    ):
        super().__init__(toolkit, **kwargs)
        self.api_token = api_token
        self.model = model
        self.chunk_chars = chunk_chars
        self.submit_delay_seconds = submit_delay_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.max_polls = max(1, math.ceil(poll_timeout_seconds / poll_interval_seconds))

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def synthesize(
        self,
        text: str,
        output_path: str,
        voice_id: Optional[str] = None,
    ) -> SynthesisResult:
        chunks = chunk_text(text, self.chunk_chars)
        audio_chunks = []

        async with self._http() as client:
            for idx, chunk in enumerate(chunks):
                if idx > 0:
                    await self._sleep(self.submit_delay_seconds)
                if len(chunks) > 1:
                    logger.info(f"Replicate chunk {idx + 1}/{len(chunks)}: {chunk[:50]!r}")

                prediction = await self._create(client, chunk, voice_id, wait=True)
                prediction = await self._poll_until_done(client, prediction, idx)
                audio_chunks.append(await self._download(client, prediction))

        return await self._finalize(audio_chunks, output_path, text)

    async def synthesize_batch(
        self,
        texts: list[str],
        output_paths: list[str],
        voice_id: Optional[str] = None,
    ) -> list[SynthesisResult]:
        """
        Submit every segment's jobs sequentially, then poll them together.

        Raises:
            JobFailedError: naming every segment whose job failed or was canceled
            PollTimeoutError: naming every segment still pending at the deadline
        """
        # (segment index, chunk index, text) per job
        jobs = [
            (seg_idx, chunk_idx, chunk)
            for seg_idx, text in enumerate(texts)
            for chunk_idx, chunk in enumerate(chunk_text(text, self.chunk_chars))
        ]

        async with self._http() as client:
            pending: dict[int, dict] = {}
            for job_no, (seg_idx, _, chunk) in enumerate(jobs):
                if job_no > 0:
                    await self._sleep(self.submit_delay_seconds)
                pending[job_no] = await self._create(client, chunk, voice_id, wait=False)
                logger.debug(f"Submitted Replicate job {job_no} for segment {seg_idx}")

            done, failures = await self._poll_all(client, pending, [seg for seg, _, _ in jobs])

            if failures:
                failed_segments = sorted({jobs[job_no][0] for job_no in failures})
                details = "; ".join(f"job {jobs[n][0]}: {failures[n]}" for n in sorted(failures))
                raise JobFailedError(
                    f"Replicate job(s) {', '.join(map(str, failed_segments))} failed: {details}",
                    self.name.value,
                    failed_jobs=failed_segments,
                )

            audio_by_segment: dict[int, list[bytes]] = {idx: [] for idx in range(len(texts))}
            for job_no, (seg_idx, _, _) in enumerate(jobs):
                audio_by_segment[seg_idx].append(await self._download(client, done[job_no]))

        results = []
        for seg_idx, (text, path) in enumerate(zip(texts, output_paths)):
            results.append(await self._finalize(audio_by_segment[seg_idx], path, text))
        return results

    async def _poll_all(
        self,
        client: httpx.AsyncClient,
        pending: dict[int, dict],
        segment_of_job: list[int],
    ) -> tuple[dict[int, dict], dict[int, str]]:
        """Poll every pending job each tick; remove each on its terminal state."""
        done: dict[int, dict] = {}
        failures: dict[int, str] = {}

        def settle(job_no: int, prediction: dict) -> bool:
            state = _state_of(prediction)
            if not state.terminal:
                pending[job_no] = prediction
                return False
            if state == JobState.SUCCEEDED:
                done[job_no] = prediction
            else:
                failures[job_no] = prediction.get("error") or state.value
                logger.error(f"Replicate job for segment {segment_of_job[job_no]} {state.value}")
            return True

        for job_no in list(pending):
            if settle(job_no, pending[job_no]):
                del pending[job_no]

        for _ in range(self.max_polls):
            if not pending:
                break
            await self._sleep(self.poll_interval_seconds)
            for job_no in list(pending):
                prediction = await self._get(client, pending[job_no])
                if settle(job_no, prediction):
                    del pending[job_no]

        if pending:
            waiting = sorted({segment_of_job[n] for n in pending})
            message = (
                f"Replicate job(s) {', '.join(map(str, waiting))} still pending after "
                f"{self.max_polls} polls"
            )
            if failures:
                failed = sorted({segment_of_job[n] for n in failures})
                message += f"; job(s) {', '.join(map(str, failed))} failed"
            raise PollTimeoutError(message, self.name.value, pending_jobs=waiting)
        return done, failures

    async def _create(
        self,
        client: httpx.AsyncClient,
        text: str,
        voice_id: Optional[str],
        wait: bool,
    ) -> dict:
        headers = dict(self._headers)
        if wait:
            headers["Prefer"] = f"wait={WAIT_HINT_SECONDS}"

        model_input = {"prompt": text}
        if voice_id:
            model_input["audio_prompt"] = voice_id

        response = await self._send_with_backoff(
            client,
            "POST",
            f"{REPLICATE_API}/models/{self.model}/predictions",
            headers=headers,
            json={"input": model_input},
        )
        self._raise_for_status(response, "prediction create")
        return response.json()

    async def _get(self, client: httpx.AsyncClient, prediction: dict) -> dict:
        url = (prediction.get("urls") or {}).get("get") or f"{REPLICATE_API}/predictions/{prediction['id']}"
        response = await self._send_with_backoff(client, "GET", url, headers=self._headers)
        self._raise_for_status(response, "prediction poll")
        return response.json()

    async def _poll_until_done(self, client: httpx.AsyncClient, prediction: dict, job_no: int) -> dict:
        for _ in range(self.max_polls):
            if _state_of(prediction).terminal:
                break
            await self._sleep(self.poll_interval_seconds)
            prediction = await self._get(client, prediction)

        state = _state_of(prediction)
        if not state.terminal:
            raise PollTimeoutError(
                f"Replicate job {job_no} still pending after {self.max_polls} polls",
                self.name.value,
                pending_jobs=[job_no],
            )
        if state != JobState.SUCCEEDED:
            raise JobFailedError(
                f"Replicate job {job_no} {state.value}: {prediction.get('error') or 'no detail'}",
                self.name.value,
                failed_jobs=[job_no],
            )
        return prediction

    async def _download(self, client: httpx.AsyncClient, prediction: dict) -> bytes:
        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if isinstance(output, dict):
            output = output.get("url") or output.get("audio")
        if not output:
            raise SynthesisError("Replicate prediction succeeded without an output URL", self.name.value)

        try:
            response = await client.get(output)
        except httpx.HTTPError as e:
            raise SynthesisError(f"Failed to download Replicate audio: {e}", self.name.value) from e
        self._raise_for_status(response, "audio download")
        return response.content


def _state_of(prediction: dict) -> JobState:
    try:
        return JobState(prediction.get("status", JobState.STARTING.value))
    except ValueError:
        return JobState.PROCESSING
