# common/schemas.py
from __future__ import annotations
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

class Verdict(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def coerce(cls, value) -> "Verdict":
        """Case-insensitive; anything that is not PASS/FAIL is UNKNOWN."""
        if value is None:
            return cls.UNKNOWN
        text = str(value).upper()
        if text == "PASS":
            return cls.PASS
        if text == "FAIL":
            return cls.FAIL
        return cls.UNKNOWN

def overall_status(results) -> Verdict:
    """FAIL beats PASS beats UNKNOWN."""
    seen = set(results)
    if Verdict.FAIL in seen:
        return Verdict.FAIL
    if Verdict.PASS in seen:
        return Verdict.PASS
    return Verdict.UNKNOWN

class Detection(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float
    height: float
    label: Optional[str] = None
    confidence: Optional[float] = None
    color: Optional[str] = None   # hex from the tag "flag" field

class ROIResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    box_number: int
    camera_id: str
    result: Verdict
    reason: str
    image_data: str               # data:image/jpeg;base64,...
    timestamp: int                # epoch ms of the owning batch
    batch_id: str
    detections: Optional[Tuple[Detection, ...]] = None

    @property
    def selection_key(self) -> str:
        return f"{self.batch_id}_{self.box_number}"

class FinalizedBatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    event: str = "inspection.batch"
    id: str
    timestamp: int                # epoch ms, batch creation
    model: str = "Unknown"
    version: str = "Unknown"
    project_id: Optional[str] = None
    overall_status: Verdict = Verdict.UNKNOWN
    processing_time: float = 0.0
    total_inputs: int = 0
    rois: Tuple[ROIResult, ...] = ()
