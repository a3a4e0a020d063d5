import secrets
import time
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

MINUTES_PER_DAY = 24 * 60


class ImageStatus(StrEnum):
    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ScanFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def generate_image_id() -> str:
    """Id for an image captured in-app, where there is no source asset id."""
    return f"img_{int(time.time() * 1000)}_{secrets.token_hex(5)[:9]}"


class ImageRecord(BaseModel):
    """One known image and its captioning lifecycle."""

    id: str
    source_ref: str
    status: ImageStatus = ImageStatus.UNPROCESSED
    caption: str | None = None
    detailed_caption: str | None = None
    error: str | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)

    file_name: str = ""
    captured_at: datetime | None = None  # asset creation time, used for dedup
    metadata: dict = Field(default_factory=dict)

    @field_validator(
        "processing_started_at",
        "processing_completed_at",
        "created_at",
        "captured_at",
    )
    @classmethod
    def _normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class TimeWindow(BaseModel):
    """Minutes of the (local) day during which background scans may run."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    start_minute_of_day: int = Field(default=9 * 60, ge=0, lt=MINUTES_PER_DAY)
    end_minute_of_day: int = Field(default=21 * 60, ge=0, lt=MINUTES_PER_DAY)

    @field_validator("start_minute_of_day", "end_minute_of_day", mode="before")
    @classmethod
    def _parse_clock(cls, value):
        # "HH:MM" as written by settings forms
        if isinstance(value, str) and ":" in value:
            hours, minutes = value.split(":", 1)
            return int(hours) * 60 + int(minutes)
        return value

    @property
    def wraps_midnight(self) -> bool:
        return self.start_minute_of_day > self.end_minute_of_day


class ScanPolicyConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    auto_scan_enabled: bool = False
    frequency: ScanFrequency = ScanFrequency.DAILY
    custom_days: int = Field(default=1, ge=1)
    wifi_only: bool = True
    charging_only: bool = False
    time_window: TimeWindow = Field(default_factory=TimeWindow)
    last_scan_at: datetime | None = None

    @field_validator("last_scan_at")
    @classmethod
    def _normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class ProcessingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    auto_process_on_import: bool = True
    generate_detailed_caption: bool = False
    foreground_honors_gates: bool = False


class CaptionSettings(BaseModel):
    """User-editable settings. Replaced as a whole, never mutated in place."""

    model_config = ConfigDict(frozen=True)

    scan: ScanPolicyConfig = Field(default_factory=ScanPolicyConfig)
    processing: ProcessingOptions = Field(default_factory=ProcessingOptions)
