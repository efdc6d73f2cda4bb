# pitchcoach/pipeline/analyzer.py
"""
Analysis orchestration.

    audio -> mono -> model rows -> decode -> stabilize -> clarity gate
          -> [rhythm grid + user imputation] -> offset estimate -> scoring

and, independently, pitch frames -> note preview (grid merge when a rhythm
is given, optimized continuity-greedy segmentation otherwise).
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import List, Optional, Sequence

import librosa
import numpy as np

from .alignment import estimate_global_offset_ms
from .audio import mix_to_mono
from .config import PipelineConfig, DEFAULT_CONFIG
from .debug import export_debug_snapshot, export_segmentation_snapshot
from .grid import quantize_to_rhythm_grid
from .imputation import impute_user_grid
from .instrumentation import PipelineLogger
from .model_pitch import PitchModel, extract_pitch_frames
from .models import (
    AnalysisResult,
    ImputationResult,
    PitchFrame,
    RhythmConfig,
    SegmentationResult,
    SegmentationStrategy,
)
from .optimizer import optimize_segmentation, score_notes, search_summary
from .pitch_utils import finite_or_zero
from .scoring import build_error_segments, compute_error_frames, summarize_errors
from .utils_config import coalesce_not_none
from .segmentation import segment_grid_merge, select_strategy

logger = logging.getLogger(__name__)


def apply_clarity_gate(frames: Sequence[PitchFrame], threshold: float) -> List[PitchFrame]:
    """Unvoice frames whose clarity is below ``threshold``."""
    return [f if f.hz is None or f.clarity >= threshold else replace(f, hz=None) for f in frames]


def _align_user_rate(user_mono: np.ndarray, user_sr: int, sr: int) -> np.ndarray:
    if user_sr == sr or user_mono.size == 0:
        return user_mono
    return librosa.resample(user_mono, orig_sr=user_sr, target_sr=sr)


def analyze_pitch(
    ref_audio: np.ndarray,
    user_audio: np.ndarray,
    sr: int,
    model: PitchModel,
    config: PipelineConfig = DEFAULT_CONFIG,
    manual_offset_ms: float = 0.0,
    rhythm: Optional[RhythmConfig] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
    user_sr: Optional[int] = None,
) -> AnalysisResult:
    """
    Compare a sung take against a reference recording.

    Without ``rhythm`` both contours are scored frame against frame and no
    imputation runs (observed == imputed). With ``rhythm`` both are
    quantized to the grid and the user grid goes through the configured
    imputation passes; observed-only errors and stats are always reported
    next to the imputed ones.
    """
    owns_logger = False
    if pipeline_logger is None and config.debug_dir:
        try:
            pipeline_logger = PipelineLogger(base_dir=config.debug_dir)
            owns_logger = True
        except OSError as e:
            logger.warning("Debug export disabled, cannot use %s: %s", config.debug_dir, e)
    if pipeline_logger is not None:
        pipeline_logger.emit_config("analysis", config.analysis, {"rhythm": rhythm, "manual_offset_ms": manual_offset_ms})

    timings = {}

    t0 = time.perf_counter()
    ref_mono = mix_to_mono(ref_audio)
    user_mono = mix_to_mono(user_audio)
    user_rate = int(coalesce_not_none(user_sr, sr))
    ref_raw = extract_pitch_frames(ref_mono, sr, model, config)
    user_raw = extract_pitch_frames(user_mono, user_rate, model, config)
    timings["pitch"] = time.perf_counter() - t0

    threshold = config.analysis.clarity_threshold
    ref_voiced = apply_clarity_gate(ref_raw, threshold)
    user_voiced = apply_clarity_gate(user_raw, threshold)

    t0 = time.perf_counter()
    if rhythm is not None:
        ref_seq = quantize_to_rhythm_grid(ref_voiced, rhythm)
        user_grid = quantize_to_rhythm_grid(user_voiced, rhythm)
        imputation = impute_user_grid(user_grid, ref_seq, config.imputation)
    else:
        ref_seq = ref_voiced
        imputation = ImputationResult(observed=list(user_voiced), imputed=list(user_voiced))
    timings["grid"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    estimated_offset_ms = finite_or_zero(
        estimate_global_offset_ms(ref_mono, _align_user_rate(user_mono, user_rate, sr), sr, config.alignment)
    )
    manual_offset_ms = finite_or_zero(manual_offset_ms)
    total_offset_sec = (estimated_offset_ms + manual_offset_ms) / 1000.0
    timings["alignment"] = time.perf_counter() - t0

    t0 = time.perf_counter()
    tolerance = config.analysis.tolerance_cents
    error_frames = compute_error_frames(ref_seq, imputation.imputed, total_offset_sec)
    error_frames_observed = compute_error_frames(ref_seq, imputation.observed, total_offset_sec)
    stats = summarize_errors(error_frames, tolerance)
    stats_observed = summarize_errors(error_frames_observed, tolerance)
    top_segments = build_error_segments(
        error_frames,
        tolerance,
        min_duration_sec=config.scoring.min_segment_sec,
        top_n=config.scoring.top_segments,
    )
    timings["scoring"] = time.perf_counter() - t0

    result = AnalysisResult(
        ref_pitch=list(ref_seq),
        user_pitch=list(imputation.imputed),
        user_pitch_observed=list(imputation.observed),
        error_frames=error_frames,
        error_frames_observed=error_frames_observed,
        stats=stats,
        stats_observed=stats_observed,
        top_segments=top_segments,
        estimated_offset_ms=estimated_offset_ms,
        manual_offset_ms=manual_offset_ms,
        grid_mode=rhythm is not None,
        metric_risk=imputation.metric_risk,
        diagnostics={
            "ref_frames": len(ref_raw),
            "user_frames": len(user_raw),
            "ref_cells": len(ref_seq) if rhythm is not None else 0,
            "filled_cells": imputation.filled_cells,
            "held_cells": imputation.held_cells,
            "cell_seconds": rhythm.cell_seconds if rhythm is not None else None,
            "timing_s": {k: float(v) for k, v in timings.items()},
        },
    )
    logger.info(
        "Analysis: %d ref entries, mean |cents|=%.1f pass=%.2f undetected=%.2f offset=%.0fms",
        len(error_frames), stats.mean_abs_cents, stats.pass_ratio, stats.undetected_ratio,
        estimated_offset_ms,
    )

    if pipeline_logger is not None:
        for stage, duration in timings.items():
            pipeline_logger.record_timing(stage, duration)
        pipeline_logger.log_event("analysis", "result", {"stats": stats, "stats_observed": stats_observed})
        export_debug_snapshot(pipeline_logger, result, user_raw=user_raw)
        if owns_logger:
            pipeline_logger.finalize()
    return result


def build_note_preview(
    frames: Sequence[PitchFrame],
    rhythm: Optional[RhythmConfig] = None,
    config: PipelineConfig = DEFAULT_CONFIG,
    pipeline_logger: Optional[PipelineLogger] = None,
) -> SegmentationResult:
    """
    Note events for a pitch sequence.

    With ``rhythm`` the frames are quantized (a no-op for frames already on
    that grid) and grid cells are merged; without it the continuity-greedy
    options are searched.
    """
    strategy = select_strategy(rhythm)
    t0 = time.perf_counter()
    if strategy is SegmentationStrategy.GRID_MERGE:
        cells = quantize_to_rhythm_grid(frames, rhythm)
        notes = segment_grid_merge(cells, config.segmentation, cell_seconds=rhythm.cell_seconds)
        result = SegmentationResult(
            notes=notes,
            options=config.segmentation,
            debug_score=score_notes(notes, cells, config.search),
            configurations_tried=1,
            strategy=strategy,
            passes=["grid_merge"],
        )
    else:
        result = optimize_segmentation(frames, config.search, config.segmentation)
    elapsed = time.perf_counter() - t0

    logger.info(
        "Note preview: %d notes via %s (%d configurations, %.2fs)",
        len(result.notes), result.strategy.value, result.configurations_tried, elapsed,
    )
    if pipeline_logger is not None:
        pipeline_logger.record_timing("segmentation", elapsed, {"strategy": result.strategy.value})
        pipeline_logger.log_event("segmentation", "result", search_summary(result))
        export_segmentation_snapshot(pipeline_logger, result)
    return result
