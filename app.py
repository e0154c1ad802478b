"""
Narration Pipeline Service - script, voice and scene timeline for site intros.
Port: 6010
"""
import asyncio
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from loguru import logger
from pydantic import ValidationError

from config.settings import (
    SERVICE_NAME,
    SERVICE_PORT,
    SERVICE_VERSION,
    VoiceEngineName,
    VoiceMode,
    get_settings,
)
from services.audio.assembler import split_duration_by_words
from services.pipeline.narration_pipeline import NarrationPipeline
from services.script import ScrapedPage
from services.timeline import TimelineScheduler
from services.tts import VoiceSynthesisEngine
from shared.errors import (
    AssemblyError,
    EngineUnavailableError,
    GenerationError,
    NarrationError,
)

app = Flask(__name__)


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    settings = get_settings()
    engines = VoiceSynthesisEngine(settings).available_engines() if settings.voice_enabled else []
    return jsonify({
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "voice": {
            "enabled": settings.voice_enabled,
            "mode": settings.voice_mode.value,
            "engines": [e.value for e in engines],
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    })


@app.route("/api/timeline/schedule", methods=["POST"])
def schedule_timeline():
    """Scene frames from exact segment durations, or from weights."""
    data = request.get_json(silent=True) or {}
    durations = data.get("durations_ms")
    weights = data.get("weights")

    if durations is None and weights is None:
        return jsonify({"error": "durations_ms or weights required"}), 400

    scheduler = TimelineScheduler(get_settings().timeline)
    try:
        schedule = scheduler.schedule(
            durations_ms=durations,
            weights=weights,
            nominal_frames=data.get("nominal_frames"),
        )
    except (TypeError, ValueError) as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"status": "success", "schedule": schedule.model_dump(mode="json", by_alias=True)})


@app.route("/api/narration/split", methods=["POST"])
def split_narration():
    """Split one measured narration duration across segments by word count."""
    data = request.get_json(silent=True) or {}
    segments = data.get("segments")
    total_ms = data.get("total_duration_ms")

    if not segments or total_ms is None:
        return jsonify({"error": "segments and total_duration_ms required"}), 400
    if not isinstance(total_ms, int) or total_ms < 0:
        return jsonify({"error": "total_duration_ms must be a non-negative integer"}), 400

    durations = split_duration_by_words(total_ms, [str(s) for s in segments])
    return jsonify({
        "status": "success",
        "segment_durations_ms": durations,
        "total_duration_ms": total_ms,
    })


@app.route("/api/narration/run", methods=["POST"])
def run_narration():
    """Run script generation, voice and scheduling for one scraped page."""
    data = request.get_json(silent=True) or {}
    page_data = data.get("page")
    if not page_data:
        return jsonify({"error": "page required"}), 400

    try:
        page = ScrapedPage.model_validate(page_data)
    except ValidationError as e:
        return jsonify({"error": "invalid page", "details": e.errors(include_url=False, include_context=False)}), 400

    settings = get_settings()
    overrides = {}
    try:
        if data.get("voice_engine"):
            overrides["voice_engine"] = VoiceEngineName(data["voice_engine"])
        if data.get("voice_mode"):
            overrides["voice_mode"] = VoiceMode(data["voice_mode"])
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if "voice_enabled" in data:
        overrides["voice_enabled"] = bool(data["voice_enabled"])
    if overrides:
        settings = settings.model_copy(update=overrides)

    pipeline = NarrationPipeline.from_settings(settings)
    try:
        result = asyncio.run(pipeline.run(page, data.get("output_name")))
    except (GenerationError, EngineUnavailableError) as e:
        return jsonify({"status": "error", "error": str(e)}), 422
    except AssemblyError as e:
        return jsonify({"status": "error", "error": str(e)}), 500
    except NarrationError as e:
        logger.exception("Narration run failed")
        return jsonify({"status": "error", "error": str(e)}), 500

    return jsonify({
        "status": "success",
        "run_id": result.manifest.run_id,
        "handoff": result.handoff.model_dump(mode="json", by_alias=True),
        "script_path": result.script_path,
        "timeline_path": result.timeline_path,
        "manifest_path": result.manifest_path,
    })


if __name__ == "__main__":
    logger.info(f"{SERVICE_NAME} starting on port {SERVICE_PORT}")
    app.run(host="0.0.0.0", port=SERVICE_PORT, debug=True)
