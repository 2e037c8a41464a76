# batching/finalizer.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Mapping

from batching import fields
from batching.inflight import InFlightBatch
from batching.normalizer import normalize_event
from common.schemas import FinalizedBatch, ROIResult, Verdict, overall_status

log = logging.getLogger(__name__)

IMAGE_PREFIX = "data:image/jpeg;base64,"
UNKNOWN = "Unknown"

def reason_for(count) -> str:
    if count is None:
        return "No data"
    n = int(count) if float(count).is_integer() else count
    return f"{n} detection{'' if n == 1 else 's'}"

def image_data_of(raw: Dict[str, Any]) -> str:
    payload = fields.first_present(raw, fields.IMAGE, "")
    return f"{IMAGE_PREFIX}{payload}"

def empty_batch(batch_id: str, timestamp: int) -> FinalizedBatch:
    return FinalizedBatch(id=batch_id, timestamp=timestamp,
                          overall_status=Verdict.UNKNOWN, total_inputs=0, rois=())

class BatchFinalizer:
    """Builds immutable FinalizedBatch values from raw per-camera contributions."""

    def finalize(self, batch: InFlightBatch) -> FinalizedBatch:
        return self.build(batch.batch_id, batch.created_at, batch.contributions)

    def build(self, batch_id: str, created_at: int,
              contributions: Mapping[str, Dict[str, Any]]) -> FinalizedBatch:
        if not contributions:
            log.warning(f"[finalize] batch {batch_id} has no contributions; emitting empty batch")
            return empty_batch(batch_id, created_at)

        # first camera to arrive decides model/version/project for the batch
        first = next(iter(contributions.values()))
        model = fields.first_present(first, fields.MODEL, UNKNOWN)
        version = fields.first_present(first, fields.VERSION, UNKNOWN)
        project_id = fields.first_present(first, fields.PROJECT_ID)

        rois: List[ROIResult] = []
        for box_number, (camera_id, raw) in enumerate(contributions.items(), start=1):
            event = normalize_event(raw)
            rois.append(ROIResult(
                box_number=box_number,
                camera_id=camera_id,
                result=event.verdict,
                reason=reason_for(event.detection_count),
                image_data=image_data_of(raw),
                timestamp=created_at,
                batch_id=batch_id,
                detections=tuple(event.detections) or None,
            ))

        return FinalizedBatch(
            id=batch_id,
            timestamp=created_at,
            model=str(model),
            version=str(version),
            project_id=str(project_id) if project_id is not None else None,
            overall_status=overall_status(r.result for r in rois),
            total_inputs=len(contributions),
            rois=tuple(rois),
        )

    def finalize_aggregate(self, raw: Dict[str, Any], now_ms: int) -> FinalizedBatch:
        """
        Older senders push a whole cycle in one message:
          {overall_pass_fail, total_inputs, total_time, model, version,
           results: {camera_id: {result, reason, image}}}
        These are complete on arrival and skip debouncing.
        """
        batch_id = f"batch_{now_ms}"
        results = raw.get("results") or {}
        rois: List[ROIResult] = []
        for box_number, (camera_id, res) in enumerate(results.items(), start=1):
            res = res if isinstance(res, dict) else {}
            image = res.get("image")
            rois.append(ROIResult(
                box_number=box_number,
                camera_id=str(camera_id),
                result=Verdict.coerce(res.get("result")),
                reason=str(res.get("reason") or "No reason provided"),
                image_data=image if isinstance(image, str) else "",
                timestamp=now_ms,
                batch_id=batch_id,
            ))

        status = overall_status(r.result for r in rois)
        claimed = Verdict.coerce(raw.get("overall_pass_fail"))
        if claimed is not status:
            log.warning(f"[aggregate] {batch_id}: sender reported {claimed.value}, rois give {status.value}")

        total_time = raw.get("total_time")
        total_inputs = raw.get("total_inputs")
        return FinalizedBatch(
            id=batch_id,
            timestamp=now_ms,
            model=str(raw.get("model") or UNKNOWN),
            version=str(raw.get("version") or UNKNOWN),
            overall_status=status,
            processing_time=float(total_time) if fields.is_number(total_time) else 0.0,
            total_inputs=int(total_inputs) if fields.is_number(total_inputs) else 0,
            rois=tuple(rois),
        )
