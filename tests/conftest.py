"""
Pytest Configuration and Fixtures

Shared fakes for the media toolkit and the OpenAI client, plus settings
that point every artifact at a temporary directory.
"""

import json
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest

from config.settings import EngineCredentials, NarrationSettings
from shared.errors import AssemblyError


class FakeToolkit:
    """
    Stands in for AudioToolkit without ffmpeg.

    Artifacts are plain text files; a line "ms=<n>" declares n milliseconds
    of audio, and a joined file's duration is the sum of its lines. A
    crossfaded join loses crossfade_ms per boundary, like ffmpeg acrossfade.
    """

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def _record(self, op, *args):
        self.calls.append((op, *args))
        if op == self.fail_on:
            raise AssemblyError(f"ffmpeg failed during {op}")

    def ops(self, name):
        return [call for call in self.calls if call[0] == name]

    async def probe_duration_ms(self, file_path, text=""):
        self._record("probe", file_path)
        total = 0
        for line in Path(file_path).read_text().splitlines():
            if line.startswith("ms="):
                total += int(line[3:])
        return total, False

    async def to_mp3(self, in_path, out_path):
        self._record("to_mp3", in_path, out_path)
        shutil.copyfile(in_path, out_path)

    async def to_wav(self, in_path, out_path):
        self._record("to_wav", in_path, out_path)
        shutil.copyfile(in_path, out_path)

    async def concat_wavs(self, input_paths, out_path):
        self._record("concat_wavs", list(input_paths), out_path)
        _join(input_paths, out_path)

    async def crossfade_concat(self, input_paths, out_path, crossfade_ms=30):
        self._record("crossfade_concat", list(input_paths), out_path, crossfade_ms)
        _join(input_paths, out_path)
        # acrossfade overlaps neighbours, shortening the track at each boundary
        with open(out_path, "a") as joined:
            for _ in range(len(input_paths) - 1):
                joined.write(f"ms=-{crossfade_ms}\n")

    async def master(self, file_path):
        self._record("master", file_path)


def _join(input_paths, out_path):
    parts = [Path(p).read_text().strip() for p in input_paths]
    Path(out_path).write_text("\n".join(parts) + "\n")


def audio_bytes(duration_ms: int) -> bytes:
    return f"ms={duration_ms}\n".encode()


class FakeChatCompletions:
    """Returns queued responses in order; an Exception entry is raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if not isinstance(response, str):
            response = json.dumps(response)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=response))]
        )


class FakeSpeech:
    """audio.speech.create: ms per word, optionally failing on given calls."""

    def __init__(self, ms_per_word=300, fail_on_calls=()):
        self.ms_per_word = ms_per_word
        self.fail_on_calls = set(fail_on_calls)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if len(self.calls) in self.fail_on_calls:
            raise openai.APIConnectionError(
                request=httpx.Request("POST", "https://api.openai.com/v1/audio/speech")
            )
        words = len(kwargs["input"].split())
        return SimpleNamespace(content=audio_bytes(words * self.ms_per_word))


def fake_openai_client(chat_responses=(), speech=None):
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeChatCompletions(chat_responses)),
        audio=SimpleNamespace(speech=speech or FakeSpeech()),
    )


def words(count: int, word: str = "word") -> str:
    """A sentence of exactly `count` words."""
    return " ".join([word] * count) + "."


def make_candidate(segment_words=15, **overrides) -> dict:
    """A structurally valid model response with 8 equal segments."""
    sizes = segment_words if isinstance(segment_words, list) else [segment_words] * 8
    candidate = {
        "brandName": "Acme",
        "brandUrl": "acme.io",
        "brandColor": "#0F172A",
        "accentColor": "#22C55E",
        "tagline": "Ship work that matters.",
        "hookLine1": "Too many tools.",
        "hookLine2": "One place for the work.",
        "hookKeyword": "work",
        "features": [
            {"icon": "kanban", "appName": "Boards", "caption": "Plan sprints", "demoLines": ["To do", "Doing"]},
            {"icon": "chat", "appName": "Threads", "caption": "Talk in context", "demoLines": ["Ship it?"]},
            {"icon": "chart", "appName": "Insights", "caption": "See progress", "demoLines": ["Velocity 42"]},
        ],
        "integrations": ["Slack", "GitHub", "Figma"],
        "ctaUrl": "acme.io/start",
        "narrationSegments": [words(n) for n in sizes],
    }
    candidate.update(overrides)
    return candidate


class SleepRecorder:
    """Injected in place of asyncio.sleep; returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def no_sleep():
    return SleepRecorder()


@pytest.fixture
def settings(temp_dir) -> NarrationSettings:
    """Settings with every engine credential and no chatterbox spaces."""
    return NarrationSettings(
        credentials=EngineCredentials(
            elevenlabs_api_key="el-test",
            openai_api_key="sk-test",
            replicate_api_token="r8-test",
        ),
        chatterbox_spaces=[],
        output_dir=temp_dir / "output",
        scratch_dir=temp_dir / "scratch",
    )


@pytest.fixture
def page():
    from services.script import ScrapedPage
    return ScrapedPage(
        url="https://www.acme.io/",
        domain="acme.io",
        title="Acme - project hub",
        description="Plan, talk and ship in one place.",
        headings=["Plan sprints", "Talk in context", "See progress"],
        features=["Kanban boards", "Threaded chat", "Progress insights"],
        bodyText="Acme keeps teams aligned.",
        colors=["#0F172A"],
    )
