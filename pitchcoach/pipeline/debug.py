# pitchcoach/pipeline/debug.py
"""
Offline debug snapshots: pitch/error timelines as CSV plus a JSON summary.

Exports are fire-and-forget. Any failure is logged and swallowed so the
analysis result never depends on the filesystem.
"""

from __future__ import annotations

import csv
import logging
import os
from dataclasses import asdict
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from .instrumentation import PipelineLogger
from .models import AnalysisResult, ErrorFrame, PitchFrame, SegmentationResult
from .pitch_utils import hz_to_midi

logger = logging.getLogger(__name__)

PITCH_COLUMNS = ["series", "time_sec", "hz", "midi", "clarity", "voiced"]
ERROR_COLUMNS = ["time_sec", "cents", "abs_cents", "reference_voiced"]


def _pitch_rows(name: str, frames: Iterable[PitchFrame]):
    for f in frames:
        yield {
            "series": name,
            "time_sec": round(float(f.time_sec), 6),
            "hz": "" if f.hz is None else round(float(f.hz), 4),
            "midi": "" if f.hz is None or f.hz <= 0 else round(hz_to_midi(f.hz), 3),
            "clarity": round(float(f.clarity), 4),
            "voiced": int(f.hz is not None),
        }


def write_pitch_timeline_csv(path: str, series: Mapping[str, Sequence[PitchFrame]]) -> None:
    """One row per frame per named series (long format)."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=PITCH_COLUMNS)
        w.writeheader()
        for name, frames in series.items():
            w.writerows(_pitch_rows(name, frames))


def write_error_timeline_csv(path: str, error_frames: Iterable[ErrorFrame]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=ERROR_COLUMNS)
        w.writeheader()
        for e in error_frames:
            w.writerow({
                "time_sec": round(float(e.time_sec), 6),
                "cents": "" if e.cents is None else round(float(e.cents), 3),
                "abs_cents": "" if e.cents is None else round(abs(float(e.cents)), 3),
                "reference_voiced": int(e.reference_voiced),
            })


def export_debug_snapshot(
    pipeline_logger: PipelineLogger,
    result: AnalysisResult,
    user_raw: Optional[Sequence[PitchFrame]] = None,
    extras: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Write the intermediate state of one analysis into the logger's run dir.

    Returns True when every artifact was written.
    """
    try:
        run_dir = pipeline_logger.run_dir
        write_pitch_timeline_csv(
            os.path.join(run_dir, "pitch_timeline.csv"),
            {
                "reference": result.ref_pitch,
                "user_raw": list(user_raw or []),
                "user_observed": result.user_pitch_observed,
                "user_imputed": result.user_pitch,
            },
        )
        write_error_timeline_csv(os.path.join(run_dir, "error_timeline.csv"), result.error_frames)

        summary: Dict[str, Any] = {
            "stats": asdict(result.stats),
            "stats_observed": asdict(result.stats_observed),
            "top_segments": [asdict(s) for s in result.top_segments],
            "estimated_offset_ms": result.estimated_offset_ms,
            "manual_offset_ms": result.manual_offset_ms,
            "grid_mode": result.grid_mode,
            "metric_risk": result.metric_risk,
            "diagnostics": result.diagnostics,
        }
        if extras:
            summary.update(extras)
        pipeline_logger.write_json("debug_snapshot.json", summary)
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Debug snapshot export failed: %s", e)
        pipeline_logger.log_event("debug", "snapshot_failed", {"error": str(e)})
        return False

    pipeline_logger.log_event("debug", "snapshot_written", {"run_dir": pipeline_logger.run_dir})
    return True


def export_segmentation_snapshot(pipeline_logger: PipelineLogger, segmentation: SegmentationResult) -> bool:
    """
    Chosen options, debug score and notes of one note preview.

    ``write_json`` is best-effort, so success is read back from the run dir.
    """
    pipeline_logger.write_json("segmentation_snapshot.json", {
        "strategy": segmentation.strategy.value,
        "options": asdict(segmentation.options),
        "debug_score": asdict(segmentation.debug_score),
        "configurations_tried": segmentation.configurations_tried,
        "passes": list(segmentation.passes),
        "notes": [asdict(n) for n in segmentation.notes],
    })
    return os.path.exists(os.path.join(pipeline_logger.run_dir, "segmentation_snapshot.json"))
