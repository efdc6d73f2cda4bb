# pitchcoach/pipeline/utils_config.py
from __future__ import annotations

import dataclasses
from typing import Any, List, Mapping


class UnknownConfigKeyError(ValueError):
    """Raised when a configuration key is not present in the schema."""


def coalesce_not_none(*vals: Any) -> Any:
    """Return the first value that is not None (0 is valid and must be preserved)."""
    for v in vals:
        if v is not None:
            return v
    return None


def _is_frozen(obj: Any) -> bool:
    params = getattr(obj, "__dataclass_params__", None)
    return bool(params is not None and params.frozen)


def _set_path(cur: Any, parts: List[str], value: Any, walked: List[str]) -> Any:
    """
    Set ``parts`` below ``cur`` and return the (possibly replaced) container.
    Frozen dataclasses are rebuilt with ``dataclasses.replace``.
    """
    key = parts[0]
    walked = walked + [key]
    last = len(parts) == 1

    if isinstance(cur, dict):
        if last:
            cur[key] = value
            return cur
        if key not in cur:
            raise UnknownConfigKeyError(".".join(walked))
        cur[key] = _set_path(cur[key], parts[1:], value, walked)
        return cur

    if not hasattr(cur, key):
        raise UnknownConfigKeyError(".".join(walked))

    new_value = value if last else _set_path(getattr(cur, key), parts[1:], value, walked)
    if _is_frozen(cur):
        return dataclasses.replace(cur, **{key: new_value})
    setattr(cur, key, new_value)
    return cur


def apply_dotted_overrides(target: Any, overrides: Mapping[str, Any]) -> Any:
    """
    Apply dotted-path overrides (``"search.max_workers": 4``) into nested
    dataclasses/dicts. Unknown attribute paths raise UnknownConfigKeyError;
    dict-valued knobs accept new leaf keys.

    Returns ``target`` (mutated in place unless it is itself frozen).
    """
    for path, value in (overrides or {}).items():
        parts = str(path).split(".")
        target = _set_path(target, parts, value, [])
    return target
