import pytest

from batching.history import BatchHistory
from common.schemas import FinalizedBatch, ROIResult, Verdict


def _batch(batch_id: str, cameras: int = 2) -> FinalizedBatch:
    rois = tuple(
        ROIResult(box_number=i, camera_id=f"CAM{i}", result=Verdict.PASS, reason="No data",
                  image_data="", timestamp=0, batch_id=batch_id)
        for i in range(1, cameras + 1)
    )
    return FinalizedBatch(id=batch_id, timestamp=0, overall_status=Verdict.PASS,
                          total_inputs=cameras, rois=rois)


def test_bounded_fifo_evicts_oldest() -> None:
    history = BatchHistory(capacity=3)
    for i in range(5):
        history.deliver(_batch(f"b{i}"))
    assert [b.id for b in history.batches] == ["b2", "b3", "b4"]
    assert history.current.id == "b4"


def test_eviction_drops_selections_of_evicted_batches() -> None:
    history = BatchHistory(capacity=2)
    history.deliver(_batch("old"))
    history.deliver(_batch("mid"))
    assert history.toggle("old", 1) is True
    assert history.toggle("mid", 2) is True

    history.deliver(_batch("new"))
    assert [roi.selection_key for roi in history.selected] == ["mid_2"]


def test_toggle_twice_deselects_and_unknown_raises() -> None:
    history = BatchHistory()
    history.deliver(_batch("b1"))
    assert history.toggle("b1", 1) is True
    assert history.toggle("b1", 1) is False
    with pytest.raises(KeyError):
        history.toggle("b1", 99)
    with pytest.raises(KeyError):
        history.toggle("missing", 1)


def test_paused_history_drops_incoming_batches() -> None:
    history = BatchHistory()
    history.deliver(_batch("b1"))
    history.pause()
    assert history.deliver(_batch("b2")) is False
    assert [b.id for b in history.batches] == ["b1"]
    assert history.dropped_while_paused == 1

    history.resume()
    assert history.deliver(_batch("b3")) is True
    assert history.current.id == "b3"


def test_view_follows_newest_unless_pinned() -> None:
    history = BatchHistory(capacity=3)
    for name in ("a", "b", "c"):
        history.deliver(_batch(name))
    history.view(1)  # pin "b"
    history.deliver(_batch("d"))
    assert history.current.id == "b"
    assert history.index == 0

    history.deliver(_batch("e"))  # "b" falls off, jump to newest
    assert history.current.id == "e"


def test_view_out_of_range() -> None:
    history = BatchHistory()
    with pytest.raises(IndexError):
        history.view(0)


def test_set_capacity_trims_immediately() -> None:
    history = BatchHistory(capacity=5)
    for i in range(5):
        history.deliver(_batch(f"b{i}"))
    history.toggle("b0", 1)
    history.set_capacity(2)
    assert [b.id for b in history.batches] == ["b3", "b4"]
    assert history.selected == []
    with pytest.raises(ValueError):
        history.set_capacity(0)


def test_history_is_usable_as_accumulator_consumer(accumulator, loop) -> None:
    history = BatchHistory()
    accumulator.subscribe(history)
    accumulator.ingest({"camera_details": {"cam_id": "CAM1"}, "batch_id": "x", "prediction": "FAIL"})
    loop.advance(1000)
    assert history.current.id == "x"
    assert history.current.overall_status is Verdict.FAIL
