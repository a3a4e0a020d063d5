from datetime import UTC, datetime

import pytest

from services.captions.errors import InvalidTransition, NotFound
from services.captions.models import ImageRecord, ImageStatus
from services.captions.store import ImageRecordStore

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store():
    return ImageRecordStore(
        [ImageRecord(id="a", source_ref="file:///a.jpg"), ImageRecord(id="b", source_ref="file:///b.jpg")],
        clock=lambda: T0,
    )


def test_happy_path(store):
    started = store.start_processing("a")
    assert started.status == ImageStatus.PROCESSING
    assert started.processing_started_at == T0

    done = store.complete("a", "  A dog on a beach  ")
    assert done.status == ImageStatus.PROCESSED
    assert done.caption == "A dog on a beach"
    assert done.error is None
    assert done.processing_completed_at == T0


def test_failure_records_reason(store):
    store.start_processing("a")
    failed = store.fail("a", "Network down")
    assert failed.status == ImageStatus.ERROR
    assert failed.error == "Network down"
    assert failed.caption is None


def test_cannot_skip_processing(store):
    with pytest.raises(InvalidTransition):
        store.complete("a", "caption")
    with pytest.raises(InvalidTransition):
        store.fail("a", "nope")
    assert store.get("a").status == ImageStatus.UNPROCESSED


def test_cannot_start_twice(store):
    store.start_processing("a")
    with pytest.raises(InvalidTransition):
        store.start_processing("a")


def test_processed_needs_caption(store):
    store.start_processing("a")
    with pytest.raises(ValueError):
        store.complete("a", "   ")
    assert store.get("a").status == ImageStatus.PROCESSING


def test_reprocess_clears_results(store):
    store.start_processing("a")
    store.complete("a", "caption", "detailed")
    record = store.reprocess("a")
    assert record.status == ImageStatus.UNPROCESSED
    assert record.caption is None
    assert record.detailed_caption is None
    assert record.processing_started_at is None
    assert record.processing_completed_at is None


def test_reprocess_from_error(store):
    store.start_processing("a")
    store.fail("a", "boom")
    assert store.reprocess("a").error is None


def test_reprocess_requires_finished(store):
    with pytest.raises(InvalidTransition):
        store.reprocess("a")
    store.start_processing("a")
    with pytest.raises(InvalidTransition):
        store.reprocess("a")


def test_release_returns_to_unprocessed(store):
    store.start_processing("a")
    record = store.release("a")
    assert record.status == ImageStatus.UNPROCESSED
    assert record.processing_started_at is None


def test_detailed_caption_requires_processed(store):
    with pytest.raises(InvalidTransition):
        store.set_detailed_caption("a", "long text")
    store.start_processing("a")
    store.complete("a", "short")
    assert store.set_detailed_caption("a", "long text").detailed_caption == "long text"


def test_missing_ids_raise_not_found(store):
    with pytest.raises(NotFound) as exc:
        store.get("zzz")
    assert exc.value.image_id == "zzz"
    with pytest.raises(NotFound):
        store.start_processing("zzz")
    with pytest.raises(NotFound):
        store.remove("zzz")


def test_add_rejects_duplicates_and_stray_captions(store):
    with pytest.raises(ValueError):
        store.add(ImageRecord(id="a", source_ref="x"))
    with pytest.raises(ValueError):
        store.add(ImageRecord(id="c", source_ref="x", caption="orphan"))


def test_getters_return_copies(store):
    record = store.get("a")
    record.status = ImageStatus.PROCESSED
    record.metadata["k"] = "v"
    assert store.get("a").status == ImageStatus.UNPROCESSED
    assert store.get("a").metadata == {}


def test_recover_interrupted(store):
    store.start_processing("a")
    assert store.recover_interrupted("interrupted") == ["a"]
    record = store.get("a")
    assert record.status == ImageStatus.ERROR
    assert record.error == "interrupted"
    assert store.ids_with_status(ImageStatus.UNPROCESSED) == ["b"]


def test_remove(store):
    store.remove("a")
    assert "a" not in store
    assert len(store) == 1
