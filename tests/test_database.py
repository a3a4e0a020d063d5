from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from services.captions.models import (
    CaptionSettings,
    ImageRecord,
    ImageStatus,
    ScanFrequency,
    ScanPolicyConfig,
    TimeWindow,
)
from services.database import SqlPersistentStore, init_db

T0 = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
async def store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'memora.db'}")
    await init_db(engine)
    yield SqlPersistentStore(async_sessionmaker(engine, expire_on_commit=False))
    await engine.dispose()


async def test_empty_database_defaults(store):
    assert await store.load_images() == []
    assert await store.load_queue() == []
    assert await store.load_settings() == CaptionSettings()
    assert await store.load_last_scan_at() is None


async def test_images_round_trip_in_order(store):
    images = [
        ImageRecord(
            id="b",
            source_ref="file:///b.jpg",
            file_name="b.jpg",
            status=ImageStatus.PROCESSED,
            caption="A boat",
            detailed_caption="A small red boat on a calm lake",
            processing_started_at=T0,
            processing_completed_at=T0 + timedelta(seconds=3),
            created_at=T0 - timedelta(days=1),
            captured_at=T0 - timedelta(days=2),
            metadata={"mime_type": "image/jpeg", "width": 640},
        ),
        ImageRecord(
            id="a",
            source_ref="file:///a.jpg",
            status=ImageStatus.ERROR,
            error="Network down",
            created_at=T0,
        ),
    ]
    await store.save_images(images)

    loaded = await store.load_images()
    assert loaded == images


async def test_save_images_replaces_collection(store):
    await store.save_images([ImageRecord(id="a", source_ref="a", created_at=T0)])
    await store.save_images([ImageRecord(id="b", source_ref="b", created_at=T0)])
    assert [r.id for r in await store.load_images()] == ["b"]


async def test_non_utc_times_are_normalized(store):
    local = T0.astimezone(timezone(timedelta(hours=2)))
    await store.save_images([ImageRecord(id="a", source_ref="a", created_at=local)])
    (loaded,) = await store.load_images()
    assert loaded.created_at == T0
    assert loaded.created_at.tzinfo is not None


async def test_settings_round_trip(store):
    caption_settings = CaptionSettings(
        scan=ScanPolicyConfig(
            auto_scan_enabled=True,
            frequency=ScanFrequency.CUSTOM,
            custom_days=3,
            time_window=TimeWindow(enabled=True, start_minute_of_day="22:00", end_minute_of_day="06:00"),
        )
    )
    await store.save_settings(caption_settings)
    assert await store.load_settings() == caption_settings


async def test_queue_and_last_scan_round_trip(store):
    await store.save_queue(["c", "a", "b"])
    await store.save_last_scan_at(T0)
    assert await store.load_queue() == ["c", "a", "b"]
    assert await store.load_last_scan_at() == T0

    await store.save_queue([])
    assert await store.load_queue() == []
