from datetime import datetime
from typing import Protocol

from services.captions.models import CaptionSettings, ImageRecord


class PersistentStore(Protocol):
    """Whole-collection storage. The pipeline serializes read-modify-write itself."""

    async def load_images(self) -> list[ImageRecord]: ...

    async def save_images(self, images: list[ImageRecord]) -> None: ...

    async def load_settings(self) -> CaptionSettings: ...

    async def save_settings(self, settings: CaptionSettings) -> None: ...

    async def load_queue(self) -> list[str]: ...

    async def save_queue(self, ids: list[str]) -> None: ...

    async def load_last_scan_at(self) -> datetime | None: ...

    async def save_last_scan_at(self, when: datetime) -> None: ...


class InMemoryPersistentStore:
    """Keeps everything in process memory. Copies on the way in and out."""

    def __init__(self):
        self.images: list[ImageRecord] = []
        self.settings = CaptionSettings()
        self.queue: list[str] = []
        self.last_scan_at: datetime | None = None
        self.saves = 0

    async def load_images(self) -> list[ImageRecord]:
        return [r.model_copy(deep=True) for r in self.images]

    async def save_images(self, images: list[ImageRecord]) -> None:
        self.images = [r.model_copy(deep=True) for r in images]
        self.saves += 1

    async def load_settings(self) -> CaptionSettings:
        return self.settings

    async def save_settings(self, settings: CaptionSettings) -> None:
        self.settings = settings

    async def load_queue(self) -> list[str]:
        return list(self.queue)

    async def save_queue(self, ids: list[str]) -> None:
        self.queue = list(ids)

    async def load_last_scan_at(self) -> datetime | None:
        return self.last_scan_at

    async def save_last_scan_at(self, when: datetime) -> None:
        self.last_scan_at = when
