import pytest
from pydantic import ValidationError

from batching.finalizer import BatchFinalizer, reason_for
from batching.inflight import InFlightBatch
from common.schemas import Verdict, overall_status


def _batch(*events, batch_id: str = "b1", created_at: int = 1000) -> InFlightBatch:
    batch = InFlightBatch(batch_id=batch_id, created_at=created_at)
    for cam, raw in events:
        batch.add(cam, raw)
    return batch


def test_empty_batch_is_well_formed() -> None:
    result = BatchFinalizer().finalize(_batch())
    assert result.overall_status is Verdict.UNKNOWN
    assert result.total_inputs == 0
    assert result.rois == ()
    assert result.model == "Unknown" and result.version == "Unknown"


def test_first_contribution_decides_model_version_project() -> None:
    result = BatchFinalizer().finalize(_batch(
        ("CAM1", {"model_name": "yolo", "version": "3", "project_id": "p-1"}),
        ("CAM2", {"model": "other", "model_version": "9", "project_id": "p-2"}),
    ))
    assert (result.model, result.version, result.project_id) == ("yolo", "3", "p-1")


def test_missing_model_info_defaults_to_unknown() -> None:
    result = BatchFinalizer().finalize(_batch(("CAM1", {"prediction": "PASS"})))
    assert (result.model, result.version, result.project_id) == ("Unknown", "Unknown", None)


@pytest.mark.parametrize(
    "verdicts, expected",
    [
        (["PASS", "UNKNOWN", "FAIL"], Verdict.FAIL),
        (["PASS", "UNKNOWN"], Verdict.PASS),
        (["UNKNOWN", "weird"], Verdict.UNKNOWN),
    ],
)
def test_status_precedence(verdicts, expected) -> None:
    events = [(f"CAM{i}", {"prediction": v}) for i, v in enumerate(verdicts)]
    assert BatchFinalizer().finalize(_batch(*events)).overall_status is expected


def test_overall_status_of_nothing_is_unknown() -> None:
    assert overall_status([]) is Verdict.UNKNOWN


def test_roi_fields() -> None:
    result = BatchFinalizer().finalize(_batch(
        ("CAM1", {"detections": 1, "base64": "AAA", "tags": [{"tag": "crack", "box": [0.1, 0.2, 0.3, 0.5]}]}),
        ("CAM2", {"detections": 0, "image": "BBB"}),
        ("CAM3", {}),
        batch_id="b7",
        created_at=4242,
    ))
    a, b, c = result.rois
    assert a.reason == "1 detection"
    assert a.result is Verdict.FAIL
    assert a.image_data == "data:image/jpeg;base64,AAA"
    assert a.detections[0].x == pytest.approx(0.2)
    assert (a.batch_id, a.timestamp) == ("b7", 4242)

    assert b.reason == "0 detections"
    assert b.result is Verdict.PASS
    assert b.image_data == "data:image/jpeg;base64,BBB"
    assert b.detections is None

    assert c.reason == "No data"
    assert c.result is Verdict.UNKNOWN
    assert c.image_data == "data:image/jpeg;base64,"
    assert result.total_inputs == 3


def test_reason_wording() -> None:
    assert reason_for(None) == "No data"
    assert reason_for(1) == "1 detection"
    assert reason_for(3) == "3 detections"
    assert reason_for(2.0) == "2 detections"


def test_finalized_batch_is_immutable() -> None:
    result = BatchFinalizer().finalize(_batch(("CAM1", {"prediction": "PASS"})))
    with pytest.raises(ValidationError):
        result.overall_status = Verdict.FAIL
    with pytest.raises(ValidationError):
        result.rois[0].result = Verdict.FAIL


def test_aggregate_defaults() -> None:
    result = BatchFinalizer().finalize_aggregate({"results": {"CAM1": {}, "CAM2": "junk"}}, 77)
    assert result.id == "batch_77"
    assert result.overall_status is Verdict.UNKNOWN
    assert result.total_inputs == 0
    assert [r.box_number for r in result.rois] == [1, 2]
    assert result.rois[0].reason == "No reason provided"
    assert result.rois[0].result is Verdict.UNKNOWN


def test_aggregate_status_follows_its_rois() -> None:
    raw = {
        "overall_pass_fail": "PASS",
        "results": {"CAM1": {"result": "PASS"}, "CAM2": {"result": "FAIL", "reason": 3, "image": b"raw"}},
    }
    result = BatchFinalizer().finalize_aggregate(raw, 10)
    assert result.overall_status is Verdict.FAIL
    assert result.rois[1].reason == "3"
    assert result.rois[1].image_data == ""
