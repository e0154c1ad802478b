"""
Text helpers for narration: word counts, sentence chunking, duration estimates.
"""
import re

# Approximation used when the artifact cannot be decoded.
MS_PER_WORD = 150

# Narration pacing used to size a silent timeline.
NARRATION_MS_PER_WORD = 375
SENTENCE_PAUSE_MS = 250
MIN_NARRATION_MS = 30000

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


def estimate_duration_ms(text: str) -> int:
    """Estimate speech duration from word count (approximation only)."""
    return count_words(text) * MS_PER_WORD


def estimate_narration_duration_ms(text: str) -> int:
    """
    Estimate how long a full narration takes to read, including sentence pauses.

    Used to size the composition when no audio exists.
    """
    trimmed = text.strip()
    if not trimmed:
        return MIN_NARRATION_MS

    words = count_words(trimmed)
    sentences = len(re.findall(r"[.!?]+", trimmed))
    return max(MIN_NARRATION_MS, words * NARRATION_MS_PER_WORD + sentences * SENTENCE_PAUSE_MS)


def chunk_text(text: str, max_chars: int) -> list[str]:
    """
    Split text into chunks of at most max_chars on sentence boundaries.

    A sentence is never split; a single sentence longer than max_chars
    becomes its own chunk.
    """
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current = ""

    for sentence in _SENTENCE_SPLIT.split(text.strip()):
        candidate = f"{current} {sentence}".strip()
        if len(candidate) > max_chars and current:
            chunks.append(current.strip())
            current = sentence
        else:
            current = candidate

    if current.strip():
        chunks.append(current.strip())

    return chunks
