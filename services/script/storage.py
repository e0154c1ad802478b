"""
Script artifact IO.
"""

import json
from pathlib import Path
from typing import Union

from loguru import logger

from .models import NarrationScript


def save_script(script: NarrationScript, path: Union[str, Path]) -> Path:
    """Write the script (plus the joined narration) as JSON."""
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    payload = script.model_dump(by_alias=True)
    payload["narration"] = script.narration
    out_path.write_text(json.dumps(payload, indent=2))

    logger.info(f"Saved script: {out_path}")
    return out_path


def load_script(path: Union[str, Path]) -> NarrationScript:
    """Read a script written by save_script. Re-validates the contract."""
    data = json.loads(Path(path).read_text())
    data.pop("narration", None)
    return NarrationScript.model_validate(data)
