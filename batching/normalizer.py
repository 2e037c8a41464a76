# batching/normalizer.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from batching import fields
from batching.transform import sensor_to_display
from common.schemas import Detection, Verdict

log = logging.getLogger(__name__)

UNKNOWN_CAMERA = "Unknown"

@dataclass(frozen=True)
class NormalizedEvent:
    camera_id: str
    verdict: Verdict
    detections: List[Detection] = field(default_factory=list)
    detection_count: Optional[float] = None   # None when the sender gave no numeric count

def camera_id_of(raw: Dict[str, Any]) -> str:
    value = fields.first_present(raw, fields.CAMERA_ID)
    return str(value) if value is not None else UNKNOWN_CAMERA

def detection_count_of(raw: Dict[str, Any]) -> Optional[float]:
    value = fields.get_path(raw, fields.DETECTION_COUNT)
    return value if fields.is_number(value) else None

def verdict_of(raw: Dict[str, Any]) -> Verdict:
    value = fields.first_present(raw, fields.VERDICT)
    if value is None:
        count = detection_count_of(raw)
        if count is None:
            return Verdict.UNKNOWN
        return Verdict.FAIL if count > 0 else Verdict.PASS
    return Verdict.coerce(value)

# ---------------- detection encodings ----------------

def _confidence(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def _from_tags(entries: List[Any]) -> List[Detection]:
    out: List[Detection] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if entry.get("tag") == fields.NO_DETECTION_TAG:
            continue
        box = entry.get("box") or []
        if not isinstance(box, (list, tuple)) or len(box) < 4:
            log.debug(f"tag entry without a usable box: {entry!r}")
            continue
        try:
            x1, y1, x2, y2 = (float(v) for v in box[:4])
        except (TypeError, ValueError):
            continue
        geom = sensor_to_display(x1, y1, x2, y2)
        tag, flag = entry.get("tag"), entry.get("flag")
        out.append(Detection(
            **geom,
            label=str(tag) if tag is not None else None,
            confidence=_confidence(entry.get("score")),
            color=flag if isinstance(flag, str) else None,
        ))
    return out

def _from_legacy(entries: List[Any]) -> List[Detection]:
    # legacy encodings are already display-oriented
    out: List[Detection] = []
    for box in entries:
        if not isinstance(box, dict):
            continue
        label = fields.first_present(box, fields.BOX_LABEL)
        confidence = fields.first_present(box, fields.BOX_CONFIDENCE)
        out.append(Detection(
            x=fields.as_float(fields.first_present(box, fields.BOX_X, 0)),
            y=fields.as_float(fields.first_present(box, fields.BOX_Y, 0)),
            width=fields.first_extent(box, fields.BOX_WIDTH),
            height=fields.first_extent(box, fields.BOX_HEIGHT),
            label=str(label) if label is not None else None,
            confidence=float(confidence) if fields.is_number(confidence) else None,
        ))
    return out

def detections_of(raw: Dict[str, Any]) -> List[Detection]:
    """First non-empty encoding wins; encodings are never merged."""
    tags = raw.get(fields.TAG_LIST)
    if isinstance(tags, list) and tags:
        return _from_tags(tags)
    for key in fields.LEGACY_ENCODINGS:
        boxes = raw.get(key)
        if isinstance(boxes, list) and boxes:
            return _from_legacy(boxes)
    return []

def normalize_event(raw: Dict[str, Any]) -> NormalizedEvent:
    return NormalizedEvent(
        camera_id=camera_id_of(raw),
        verdict=verdict_of(raw),
        detections=detections_of(raw),
        detection_count=detection_count_of(raw),
    )
