"""
Media Tools

FFmpeg/FFprobe wrappers for narration audio: duration probing, format
conversion, crossfaded concatenation and mastering.
"""

import asyncio
import json
import os
import shutil
from pathlib import Path
from typing import Optional

from loguru import logger

from shared.errors import AssemblyError
from shared.text import estimate_duration_ms

SAMPLE_RATE = 44100
CHANNELS = 1
MP3_BITRATE = "192k"

# Boundary crossfade: only long enough to hide encoder clicks.
CLICK_CROSSFADE_MS = 30

MASTERING_FILTER = (
    "highpass=f=80,"
    "equalizer=f=3000:t=q:w=1.2:g=2,"
    "loudnorm=I=-16:TP=-1.5:LRA=11"
)


class AudioToolkit:
    """Async wrapper around the local ffmpeg/ffprobe binaries."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe"):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def _run(self, cmd: list[str]) -> tuple[str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise AssemblyError(f"{cmd[0]} is not installed") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise AssemblyError(
                f"{Path(cmd[0]).name} failed ({process.returncode}): {stderr.decode(errors='replace')[-300:]}"
            )
        return stdout.decode(errors="replace"), stderr.decode(errors="replace")

    async def probe_duration_ms(self, file_path: str, text: str = "") -> tuple[int, bool]:
        """
        Measure an artifact's duration.

        Falls back to a words-per-minute estimate when ffprobe is missing or
        cannot read the file. The estimate is an approximation and is flagged
        as such; it is never corrected later.

        Returns:
            (duration_ms, estimated)
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            file_path,
        ]
        try:
            stdout, _ = await self._run(cmd)
            duration = float(json.loads(stdout)["format"]["duration"])
            if duration <= 0:
                raise ValueError(f"Invalid duration: {duration}")
            return round(duration * 1000), False
        except (AssemblyError, ValueError, KeyError, TypeError) as e:
            estimate = estimate_duration_ms(text)
            logger.warning(
                f"Could not probe {file_path} ({e}); using word-count estimate {estimate}ms"
            )
            return estimate, True

    async def to_mp3(self, in_path: str, out_path: str) -> None:
        """Encode to the pipeline's compressed format (mp3, 44.1 kHz mono)."""
        await self._run([
            self.ffmpeg_path, "-y",
            "-i", in_path,
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-codec:a", "libmp3lame",
            "-b:a", MP3_BITRATE,
            out_path,
        ])

    async def to_wav(self, in_path: str, out_path: str) -> None:
        """Decode to 16-bit PCM WAV at the pipeline sample rate."""
        await self._run([
            self.ffmpeg_path, "-y",
            "-i", in_path,
            "-ar", str(SAMPLE_RATE),
            "-ac", str(CHANNELS),
            "-c:a", "pcm_s16le",
            out_path,
        ])

    async def concat_wavs(self, input_paths: list[str], out_path: str) -> None:
        """Concatenate WAV chunks back to back using the concat demuxer."""
        if len(input_paths) == 1:
            shutil.copyfile(input_paths[0], out_path)
            return

        list_file = f"{out_path}.txt"
        Path(list_file).write_text("\n".join(f"file '{os.path.abspath(p)}'" for p in input_paths))
        try:
            await self._run([
                self.ffmpeg_path, "-y",
                "-f", "concat",
                "-safe", "0",
                "-i", list_file,
                "-c", "copy",
                out_path,
            ])
        finally:
            Path(list_file).unlink(missing_ok=True)

    async def crossfade_concat(
        self,
        input_paths: list[str],
        out_path: str,
        crossfade_ms: int = CLICK_CROSSFADE_MS,
    ) -> None:
        """
        Join WAVs pairwise with a short triangular crossfade at each boundary.

        A single input is passed through unchanged.
        """
        if not input_paths:
            raise AssemblyError("Nothing to concatenate")
        if len(input_paths) == 1:
            shutil.copyfile(input_paths[0], out_path)
            return

        await self._run([
            self.ffmpeg_path, "-y",
            *[arg for p in input_paths for arg in ("-i", p)],
            "-filter_complex", build_crossfade_filter(len(input_paths), crossfade_ms),
            "-map", "[out]",
            "-c:a", "pcm_s16le",
            out_path,
        ])

    async def master(self, file_path: str) -> None:
        """Apply EQ and loudness normalization in place."""
        path = Path(file_path)
        tmp_path = path.with_name(f"{path.stem}.mastering{path.suffix}")
        try:
            await self._run([
                self.ffmpeg_path, "-y",
                "-i", str(path),
                "-af", MASTERING_FILTER,
                "-ar", str(SAMPLE_RATE),
                "-ac", str(CHANNELS),
                "-codec:a", "libmp3lame",
                "-b:a", MP3_BITRATE,
                str(tmp_path),
            ])
            os.replace(tmp_path, path)
        finally:
            tmp_path.unlink(missing_ok=True)


def build_crossfade_filter(input_count: int, crossfade_ms: int) -> str:
    """
    Build an acrossfade chain: [0][1] -> a1, [a1][2] -> a2, ... -> [out].

    Args:
        input_count: Number of inputs (>= 2)
        crossfade_ms: Crossfade length per boundary

    Returns:
        filter_complex expression
    """
    seconds = crossfade_ms / 1000
    parts = []
    previous = "[0]"
    for idx in range(1, input_count):
        label = "[out]" if idx == input_count - 1 else f"[a{idx}]"
        parts.append(f"{previous}[{idx}]acrossfade=d={seconds:.3f}:c1=tri:c2=tri{label}")
        previous = label
    return ";".join(parts)


_default_toolkit: Optional[AudioToolkit] = None


def get_audio_toolkit() -> AudioToolkit:
    """Get the shared toolkit configured from settings."""
    global _default_toolkit
    if _default_toolkit is None:
        from config.settings import get_settings
        settings = get_settings()
        _default_toolkit = AudioToolkit(settings.ffmpeg_path, settings.ffprobe_path)
    return _default_toolkit
