"""
Script Service
==============
Narration script generation with contract enforcement.
"""

from .generator import ScriptGeneratorService, normalize_word_count, validate_candidate
from .models import Feature, NarrationScript, SceneSlot, ScrapedPage
from .storage import load_script, save_script

__all__ = [
    "Feature",
    "NarrationScript",
    "SceneSlot",
    "ScrapedPage",
    "ScriptGeneratorService",
    "load_script",
    "normalize_word_count",
    "save_script",
    "validate_candidate",
]
