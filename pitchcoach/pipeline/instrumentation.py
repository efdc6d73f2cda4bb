"""Lightweight structured logging for analysis stages.

Timing and JSONL events for one analysis run live under
``<base_dir>/<run_name>/``. All writes are best-effort: a failing disk
must never change an analysis result.
"""
from __future__ import annotations

import importlib.util
import json
import logging
import os
import time
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class PipelineLogger:
    """Structured logger that emits JSONL events and timing summaries."""

    def __init__(self, base_dir: str = "results", run_name: Optional[str] = None):
        self.base_dir = base_dir
        self.run_name = run_name or f"run_{int(time.time())}"
        self.run_dir = os.path.join(self.base_dir, self.run_name)
        os.makedirs(self.run_dir, exist_ok=True)
        self.logs_path = os.path.join(self.run_dir, "logs.jsonl")
        self.timing_path = os.path.join(self.run_dir, "timing.json")
        self._timing: Dict[str, float] = {}
        self._start_time = time.perf_counter()
        self.log_event(
            "pipeline",
            "start",
            {
                "run_dir": self.run_dir,
                "dependencies": self.dependency_snapshot(["basic_pitch", "librosa", "scipy", "soundfile"]),
            },
        )

    @staticmethod
    def dependency_snapshot(modules: Optional[List[str]] = None) -> Dict[str, bool]:
        """Return availability flags for the requested modules."""
        snapshot: Dict[str, bool] = {}
        for name in modules or []:
            try:
                snapshot[name] = importlib.util.find_spec(name) is not None
            except (ImportError, ValueError):
                snapshot[name] = False
        return snapshot

    def log_event(self, stage: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        entry: Dict[str, Any] = {
            "stage": stage,
            "event": event,
            "timestamp": time.time(),
        }
        for key, value in (payload or {}).items():
            try:
                json.dumps(value, default=_json_default)
                entry[key] = value
            except (TypeError, ValueError):
                entry[key] = str(value)
        try:
            with open(self.logs_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=_json_default) + "\n")
        except OSError as e:
            logger.debug("PipelineLogger event write failed: %s", e)

    def record_timing(self, stage: str, duration_s: float, metadata: Optional[Dict[str, Any]] = None) -> None:
        self._timing[stage] = float(duration_s)
        payload: Dict[str, Any] = {"duration_s": float(duration_s)}
        if metadata:
            payload.update(metadata)
        self.log_event(stage, "timing", payload)

    def finalize(self) -> None:
        if "total" not in self._timing:
            self._timing["total"] = float(time.perf_counter() - self._start_time)
        try:
            with open(self.timing_path, "w", encoding="utf-8") as f:
                json.dump(self._timing, f, indent=2)
        except OSError as e:
            logger.debug("PipelineLogger timing write failed: %s", e)

    @property
    def timing(self) -> Dict[str, float]:
        return dict(self._timing)

    def emit_config(self, stage: str, config_obj: Any, extras: Optional[Dict[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {"config": {}}
        if is_dataclass(config_obj) and not isinstance(config_obj, type):
            payload["config"] = asdict(config_obj)
        else:
            payload["config"] = str(config_obj)
        if extras:
            payload.update(extras)
        self.log_event(stage, "config", payload)

    def write_json(self, filename: str, obj: Any) -> None:
        try:
            path = os.path.join(self.run_dir, filename)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(obj, f, ensure_ascii=False, indent=2, default=_json_default)
        except (OSError, TypeError, ValueError) as e:
            self.log_event(stage="logger", event="artifact_write_failed",
                           payload={"filename": filename, "error": str(e)})

    def write_text(self, filename: str, text: str) -> None:
        try:
            path = os.path.join(self.run_dir, filename)
            with open(path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            self.log_event(stage="logger", event="artifact_write_failed",
                           payload={"filename": filename, "error": str(e)})


def _json_default(o: Any) -> Any:
    if isinstance(o, np.floating):
        return float(o)
    if isinstance(o, np.integer):
        return int(o)
    if isinstance(o, np.ndarray):
        return o.tolist()
    if is_dataclass(o) and not isinstance(o, type):
        return asdict(o)
    # enums
    v = getattr(o, "value", None)
    if v is not None:
        return v
    return str(o)
