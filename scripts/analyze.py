import argparse
import copy
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

# Allow running as `python scripts/analyze.py` from a checkout
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from pitchcoach.pipeline import (  # noqa: E402
    DEFAULT_CONFIG,
    BasicPitchModel,
    ModelUnavailableError,
    RhythmConfig,
    UnknownConfigKeyError,
    analyze_pitch,
    apply_dotted_overrides,
    build_note_preview,
    load_audio,
)
from pitchcoach.pipeline.instrumentation import PipelineLogger  # noqa: E402

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_set_args(items: Optional[List[str]]) -> Dict[str, Any]:
    """``key=value`` pairs; values are JSON-decoded when possible."""
    out: Dict[str, Any] = {}
    for item in items or []:
        if "=" not in item:
            raise ValueError(f"--set expects key=value, got {item!r}")
        key, raw = item.split("=", 1)
        try:
            out[key.strip()] = json.loads(raw)
        except json.JSONDecodeError:
            out[key.strip()] = raw
    return out


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Score a sung take against a reference recording")
    parser.add_argument("--reference", required=True, help="Path to the reference audio")
    parser.add_argument("--user", required=True, help="Path to the user's take")
    parser.add_argument("--bpm", type=float, default=None, help="Enable grid mode at this tempo")
    parser.add_argument("--subdivisions", type=int, default=4, help="Grid cells per beat")
    parser.add_argument("--click_offset_ms", type=float, default=0.0, help="Metronome offset in ms")
    parser.add_argument("--manual_offset_ms", type=float, default=0.0, help="Added to the estimated latency")
    parser.add_argument("--tolerance_cents", type=float, default=None)
    parser.add_argument("--output_json", default="analysis.json", help="Analysis output path")
    parser.add_argument("--notes_json", default=None, help="Optional note preview of the user's observed pitch")
    parser.add_argument("--debug_dir", default=None, help="Write JSONL logs, timings and CSV timelines here")
    parser.add_argument("--model_path", default=None, help="Basic Pitch model path (default: bundled)")
    parser.add_argument(
        "--set",
        action="append",
        metavar="KEY=VALUE",
        help="Dotted config override, e.g. --set imputation.reference_guided_hold=true (repeatable)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    config = copy.deepcopy(DEFAULT_CONFIG)
    try:
        overrides = parse_set_args(args.set)
        if args.tolerance_cents is not None:
            overrides["analysis.tolerance_cents"] = args.tolerance_cents
        config = apply_dotted_overrides(config, overrides)
        rhythm = (
            RhythmConfig(bpm=args.bpm, subdivisions_per_beat=args.subdivisions, click_offset_ms=args.click_offset_ms)
            if args.bpm is not None
            else None
        )
    except (UnknownConfigKeyError, ValueError) as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    try:
        ref_audio, ref_sr = load_audio(args.reference)
        user_audio, user_sr = load_audio(args.user)
    except RuntimeError as e:
        logger.error("Cannot read audio: %s", e)
        return 2
    logger.info("Loaded reference (%.2fs) and user take (%.2fs)", len(ref_audio) / ref_sr, len(user_audio) / user_sr)

    pipeline_logger = PipelineLogger(base_dir=args.debug_dir) if args.debug_dir else None
    model = BasicPitchModel(model_path=args.model_path)
    try:
        result = analyze_pitch(
            ref_audio,
            user_audio,
            ref_sr,
            model,
            config=config,
            manual_offset_ms=args.manual_offset_ms,
            rhythm=rhythm,
            pipeline_logger=pipeline_logger,
            user_sr=user_sr,
        )
    except ModelUnavailableError as e:
        logger.error("Pitch model unavailable: %s (install the 'model' extra)", e)
        return 3

    with open(args.output_json, "w", encoding="utf-8") as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info("Wrote %s", args.output_json)

    if args.notes_json:
        preview = build_note_preview(result.user_pitch_observed, rhythm, config, pipeline_logger)
        with open(args.notes_json, "w", encoding="utf-8") as f:
            json.dump(preview.to_dict(), f, indent=2)
        logger.info("Wrote %d notes to %s", len(preview.notes), args.notes_json)

    stats = result.stats
    summary = (
        f"mean |cents| {stats.mean_abs_cents:.1f}  pass {stats.pass_ratio:.0%}  "
        f"undetected {stats.undetected_ratio:.0%}  offset {result.estimated_offset_ms:.0f} ms"
    )
    print(summary)
    if pipeline_logger is not None:
        pipeline_logger.write_text("summary.txt", summary + "\n")
        pipeline_logger.finalize()
    return 0


if __name__ == "__main__":
    sys.exit(main())
