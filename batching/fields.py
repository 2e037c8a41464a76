# batching/fields.py
"""
Ordered field accessors for raw inspection events.

Senders have renamed fields over time, so each logical field is an ordered
tuple of paths. A path is a tuple of keys walked through nested dicts.
`first_present` returns the first value that is present and non-empty.
"""
from __future__ import annotations
from numbers import Number
from typing import Any, Dict, Iterable, Tuple

Path = Tuple[str, ...]

CAMERA_ID: Tuple[Path, ...] = (
    ("camera_details", "cam_id"),
    ("camera_details", "original_cam_id"),
    ("img",),
)

# a per-camera "id" is NOT a batch id
BATCH_ID: Tuple[Path, ...] = (
    ("batch_id",),
    ("inspection_id",),
    ("run_id",),
    ("batch",),
)

VERDICT: Tuple[Path, ...] = (
    ("prediction",),
    ("result",),
    ("status",),
)

DETECTION_COUNT: Path = ("detections",)

IMAGE: Tuple[Path, ...] = (
    ("base64",),
    ("image",),
)

MODEL: Tuple[Path, ...] = (("model",), ("model_name",))
VERSION: Tuple[Path, ...] = (("model_version",), ("version",))
PROJECT_ID: Tuple[Path, ...] = (("project_id",),)

# detection encodings, in priority order
TAG_LIST = "tags"
LEGACY_ENCODINGS = ("bounding_boxes", "boxes")
NO_DETECTION_TAG = "no_detections"

# legacy box geometry
BOX_X: Tuple[Path, ...] = (("x",), ("x1",), ("left",))
BOX_Y: Tuple[Path, ...] = (("y",), ("y1",), ("top",))
BOX_WIDTH = ("width", ("x2", "x1"), ("right", "left"))
BOX_HEIGHT = ("height", ("y2", "y1"), ("bottom", "top"))
BOX_LABEL: Tuple[Path, ...] = (("label",), ("class",), ("category",))
BOX_CONFIDENCE: Tuple[Path, ...] = (("confidence",), ("score",))

_MISSING = object()

def get_path(record: Any, path: Path, default: Any = None) -> Any:
    cur = record
    for key in path:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(key, _MISSING)
        if cur is _MISSING:
            return default
    return cur

def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (str, list, tuple, dict)) and len(value) == 0:
        return True
    if isinstance(value, Number) and value == 0:
        return True
    return False

def first_present(record: Dict[str, Any], paths: Iterable[Path], default: Any = None) -> Any:
    for path in paths:
        value = get_path(record, path)
        if not _is_empty(value):
            return value
    return default

def is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)

def as_float(value: Any) -> float:
    if is_number(value):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0

def first_extent(box: Dict[str, Any], spec) -> float:
    """
    Width/height: an explicit field, else the difference of a corner pair.
    First non-zero candidate wins; 0.0 when nothing is usable.
    """
    for candidate in spec:
        if isinstance(candidate, str):
            value = as_float(box.get(candidate))
        else:
            hi, lo = candidate
            if box.get(hi) is None or box.get(lo) is None:
                continue
            value = as_float(box.get(hi)) - as_float(box.get(lo))
        if value:
            return value
    return 0.0
