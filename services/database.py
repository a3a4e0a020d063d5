from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, delete, select
from sqlalchemy import Enum as SAEnum
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from config.settings import settings
from services.captions.models import CaptionSettings, ImageRecord, ImageStatus, as_utc

engine = create_async_engine(settings.database_url, echo=False)
async_session = async_sessionmaker(engine, expire_on_commit=False)

SETTINGS_KEY = "settings"
QUEUE_KEY = "processing_queue"
LAST_SCAN_KEY = "last_scan_at"


class Base(DeclarativeBase):
    pass


# --- Models ---


class ImageRow(Base):
    """A known image and its captioning state."""

    __tablename__ = "images"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, default=0)  # keeps the list order
    source_ref: Mapped[str] = mapped_column(Text)
    file_name: Mapped[str] = mapped_column(String(500), default="")
    status: Mapped[ImageStatus] = mapped_column(SAEnum(ImageStatus), default=ImageStatus.UNPROCESSED)

    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    detailed_caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    captured_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processing_started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    processing_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=lambda: datetime.now(UTC))


class StateEntry(Base):
    """Small JSON documents: settings, the processing queue, the last scan time."""

    __tablename__ = "app_state"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


async def init_db(db_engine: AsyncEngine | None = None):
    async with (db_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc(value: datetime | None) -> datetime | None:
    value = as_utc(value)
    return value.astimezone(UTC) if value is not None else None


def _row_from_record(record: ImageRecord, position: int) -> ImageRow:
    return ImageRow(
        id=record.id,
        position=position,
        source_ref=record.source_ref,
        file_name=record.file_name,
        status=record.status,
        caption=record.caption,
        detailed_caption=record.detailed_caption,
        error=record.error,
        metadata_json=record.metadata or None,
        captured_at=_utc(record.captured_at),
        processing_started_at=_utc(record.processing_started_at),
        processing_completed_at=_utc(record.processing_completed_at),
        created_at=_utc(record.created_at),
    )


def _record_from_row(row: ImageRow) -> ImageRecord:
    # SQLite drops tzinfo; everything is written in UTC
    return ImageRecord(
        id=row.id,
        source_ref=row.source_ref,
        file_name=row.file_name or "",
        status=row.status,
        caption=row.caption,
        detailed_caption=row.detailed_caption,
        error=row.error,
        metadata=row.metadata_json or {},
        captured_at=as_utc(row.captured_at),
        processing_started_at=as_utc(row.processing_started_at),
        processing_completed_at=as_utc(row.processing_completed_at),
        created_at=as_utc(row.created_at),
    )


class SqlPersistentStore:
    """PersistentStore over SQLAlchemy. Every save rewrites the whole collection."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        self.session_factory = session_factory or async_session

    async def load_images(self) -> list[ImageRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(ImageRow).order_by(ImageRow.position))
            return [_record_from_row(row) for row in result.scalars().all()]

    async def save_images(self, images: list[ImageRecord]) -> None:
        async with self.session_factory() as session:
            await session.execute(delete(ImageRow))
            session.add_all(_row_from_record(r, i) for i, r in enumerate(images))
            await session.commit()

    async def load_settings(self) -> CaptionSettings:
        value = await self._get(SETTINGS_KEY)
        if not value:
            return CaptionSettings()
        return CaptionSettings.model_validate(value)

    async def save_settings(self, caption_settings: CaptionSettings) -> None:
        await self._put(SETTINGS_KEY, caption_settings.model_dump(mode="json"))

    async def load_queue(self) -> list[str]:
        return list(await self._get(QUEUE_KEY) or [])

    async def save_queue(self, ids: list[str]) -> None:
        await self._put(QUEUE_KEY, list(ids))

    async def load_last_scan_at(self) -> datetime | None:
        value = await self._get(LAST_SCAN_KEY)
        if not value:
            return None
        return as_utc(datetime.fromisoformat(value))

    async def save_last_scan_at(self, when: datetime) -> None:
        await self._put(LAST_SCAN_KEY, _utc(when).isoformat())

    async def _get(self, key: str):
        async with self.session_factory() as session:
            entry = await session.get(StateEntry, key)
            return entry.value if entry else None

    async def _put(self, key: str, value):
        async with self.session_factory() as session:
            await session.merge(StateEntry(key=key, value=value))
            await session.commit()
