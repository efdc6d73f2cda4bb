from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from pitchcoach.pipeline import (
    DEFAULT_CONFIG,
    BasicPitchModel,
    ModelUnavailableError,
    PipelineConfig,
    PitchModel,
    RhythmConfig,
    UnknownConfigKeyError,
    analyze_pitch,
    apply_dotted_overrides,
    build_note_preview,
    extract_pitch_frames,
    load_audio,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="pitchcoach")


# Helper parsers
def parse_bool_env(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


# Allow CORS for frontend
allowed_origins_env = os.getenv("PITCHCOACH_ALLOWED_ORIGINS")
allowed_origins = (
    [origin.strip() for origin in allowed_origins_env.split(",") if origin.strip()]
    if allowed_origins_env
    else ["http://localhost:5173"]
)
allow_credentials = parse_bool_env(os.getenv("PITCHCOACH_ALLOW_CREDENTIALS"), False)

# Browsers block wildcard origins when allow_credentials=True, so disable credentials in that case
if "*" in allowed_origins and allow_credentials:
    allow_credentials = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_pitch_model() -> PitchModel:
    """Process-wide model instance; tests replace it via dependency_overrides."""
    return BasicPitchModel(model_path=os.getenv("PITCHCOACH_MODEL_PATH") or None)


def build_config(
    overrides: Optional[str],
    tolerance_cents: Optional[float] = None,
    clarity_threshold: Optional[float] = None,
) -> PipelineConfig:
    """Per-request copy of the defaults with form overrides applied."""
    config = copy.deepcopy(DEFAULT_CONFIG)
    values: Dict[str, Any] = {}
    if overrides:
        parsed = json.loads(overrides)
        if not isinstance(parsed, dict):
            raise ValueError("overrides must be a JSON object of dotted keys")
        values.update(parsed)
    if tolerance_cents is not None:
        values["analysis.tolerance_cents"] = float(tolerance_cents)
    if clarity_threshold is not None:
        values["analysis.clarity_threshold"] = float(clarity_threshold)
    return apply_dotted_overrides(config, values)


def build_rhythm(bpm: Optional[float], subdivisions: int, click_offset_ms: float) -> Optional[RhythmConfig]:
    if bpm is None:
        return None
    return RhythmConfig(bpm=float(bpm), subdivisions_per_beat=int(subdivisions), click_offset_ms=float(click_offset_ms))


async def _load_upload(file: UploadFile):
    suffix = os.path.splitext(file.filename or "upload")[1] or ".wav"
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp_path = tmp.name
        tmp.write(await file.read())
    try:
        return load_audio(tmp_path)
    except RuntimeError as e:
        raise ValueError(f"unreadable audio upload {file.filename!r}: {e}") from e
    finally:
        try:
            os.remove(tmp_path)
        except OSError:
            pass


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, ModelUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, (UnknownConfigKeyError, ValueError)):
        return HTTPException(status_code=400, detail=str(e))
    logger.exception("API error")
    return HTTPException(status_code=500, detail=str(e))


@app.post("/api/analyze")
async def analyze(
    reference: UploadFile = File(...),
    user: UploadFile = File(...),
    bpm: Optional[float] = Form(None),
    subdivisions: int = Form(4),
    click_offset_ms: float = Form(0.0),
    manual_offset_ms: float = Form(0.0),
    tolerance_cents: Optional[float] = Form(None),
    clarity_threshold: Optional[float] = Form(None),
    include_notes: bool = Form(False),
    overrides: Optional[str] = Form(None),
    model: PitchModel = Depends(get_pitch_model),
):
    """
    Score a user take against a reference.

    - bpm: enables grid mode (with subdivisions / click_offset_ms).
    - manual_offset_ms: added to the estimated latency.
    - overrides: JSON object of dotted config keys, e.g. {"imputation.fill_short_gaps": false}.
    - include_notes: also return a note preview of the user's observed pitch.
    """
    try:
        config = build_config(overrides, tolerance_cents, clarity_threshold)
        rhythm = build_rhythm(bpm, subdivisions, click_offset_ms)
        ref_audio, ref_sr = await _load_upload(reference)
        user_audio, user_sr = await _load_upload(user)

        result = analyze_pitch(
            ref_audio,
            user_audio,
            ref_sr,
            model,
            config=config,
            manual_offset_ms=manual_offset_ms,
            rhythm=rhythm,
            user_sr=user_sr,
        )
        body = result.to_dict()
        if include_notes:
            body["notes"] = build_note_preview(result.user_pitch_observed, rhythm, config).to_dict()
        return body
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error(e) from e


@app.post("/api/notes")
async def notes(
    file: UploadFile = File(...),
    bpm: Optional[float] = Form(None),
    subdivisions: int = Form(4),
    click_offset_ms: float = Form(0.0),
    overrides: Optional[str] = Form(None),
    model: PitchModel = Depends(get_pitch_model),
):
    """Note preview for one recording (grid merge when bpm is given)."""
    try:
        config = build_config(overrides)
        rhythm = build_rhythm(bpm, subdivisions, click_offset_ms)
        audio, sr = await _load_upload(file)
        frames = extract_pitch_frames(audio, sr, model, config)
        return build_note_preview(frames, rhythm, config).to_dict()
    except HTTPException:
        raise
    except Exception as e:
        raise _http_error(e) from e


@app.get("/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
