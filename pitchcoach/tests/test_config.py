import copy

import pytest

from pitchcoach.pipeline.config import DEFAULT_CONFIG, PipelineConfig
from pitchcoach.pipeline.models import SegmentationOptions
from pitchcoach.pipeline.utils_config import (
    UnknownConfigKeyError,
    apply_dotted_overrides,
    coalesce_not_none,
)


def test_coalesce_preserves_zero():
    assert coalesce_not_none(None, 0, 5) == 0
    assert coalesce_not_none(None, None) is None
    assert coalesce_not_none("a") == "a"


def test_nested_dataclass_override():
    cfg = PipelineConfig()
    apply_dotted_overrides(cfg, {"analysis.tolerance_cents": 50.0, "search.max_workers": 4})
    assert cfg.analysis.tolerance_cents == 50.0
    assert cfg.search.max_workers == 4


def test_frozen_options_are_replaced():
    cfg = PipelineConfig()
    before = cfg.segmentation
    apply_dotted_overrides(cfg, {"segmentation.median_window": 3})
    assert cfg.segmentation.median_window == 3
    assert isinstance(cfg.segmentation, SegmentationOptions)
    assert before.median_window == SegmentationOptions().median_window


def test_dict_knobs_accept_new_leaf_keys():
    cfg = PipelineConfig()
    apply_dotted_overrides(cfg, {"search.grid.median_window": [3], "search.weights.extra": 1.0})
    assert cfg.search.grid["median_window"] == [3]
    assert cfg.search.weights["extra"] == 1.0


@pytest.mark.parametrize(
    "path",
    ["analysis.tolerance", "nope", "segmentation.median", "search.grid.median_window.deeper"],
)
def test_unknown_paths_raise(path):
    with pytest.raises(UnknownConfigKeyError):
        apply_dotted_overrides(PipelineConfig(), {path: 1})


def test_unknown_key_error_is_value_error():
    assert issubclass(UnknownConfigKeyError, ValueError)


def test_overrides_on_copy_leave_default_untouched():
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    apply_dotted_overrides(cfg, {"imputation.reference_guided_hold": True})
    assert cfg.imputation.reference_guided_hold is True
    assert DEFAULT_CONFIG.imputation.reference_guided_hold is False
