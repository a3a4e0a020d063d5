import asyncio
import hashlib
import logging
import mimetypes
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from services.captions.errors import PermissionDenied
from services.captions.models import ImageRecord, as_utc

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".bmp", ".heic"}

# Two captures this close together are treated as the same photo
CREATION_TIME_TOLERANCE = timedelta(seconds=1)


@dataclass
class Asset:
    """A photo as listed by the media library."""

    id: str
    uri: str
    filename: str
    creation_time: datetime
    width: int = 0
    height: int = 0


@dataclass
class AssetPage:
    assets: list[Asset] = field(default_factory=list)
    end_cursor: str | None = None
    has_next_page: bool = False


class AssetSource(Protocol):
    async def list_assets(self, limit: int, after: str | None = None) -> AssetPage:
        """Return one page of photos, most recent first. Raises PermissionDenied."""
        ...


class LocalFolderAssetSource:
    """Media library backed by a folder of image files."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    async def list_assets(self, limit: int, after: str | None = None) -> AssetPage:
        assets = await asyncio.to_thread(self._list_all)
        offset = int(after) if after else 0
        page = assets[offset : offset + limit]
        end = offset + len(page)
        return AssetPage(
            assets=page,
            end_cursor=str(end) if page else after,
            has_next_page=end < len(assets),
        )

    def _list_all(self) -> list[Asset]:
        if not self.root.is_dir() or not os.access(self.root, os.R_OK | os.X_OK):
            raise PermissionDenied(f"Media library at {self.root} is not readable")

        assets = []
        for path in self._iter_image_files():
            try:
                stat = path.stat()
            except OSError as e:
                log.warning(f"Skipping unreadable file {path}: {e}")
                continue
            relative = path.relative_to(self.root).as_posix()
            assets.append(
                Asset(
                    id=hashlib.sha1(relative.encode()).hexdigest()[:16],
                    uri=str(path.resolve()),
                    filename=path.name,
                    creation_time=datetime.fromtimestamp(stat.st_mtime, UTC),
                )
            )
        assets.sort(key=lambda a: a.creation_time, reverse=True)
        return assets

    def _iter_image_files(self) -> Iterable[Path]:
        for path in self.root.rglob("*"):
            if path.is_file() and path.suffix.lower() in SUPPORTED_EXTENSIONS:
                yield path


def is_duplicate(asset: Asset, existing: Iterable[ImageRecord]) -> bool:
    """Same id, same source reference, or captured within a second of a known image."""
    asset_time = as_utc(asset.creation_time)
    for record in existing:
        if record.id == asset.id:
            return True
        if record.source_ref == asset.uri:
            return True
        known_time = record.captured_at or record.created_at
        if known_time is not None and abs(known_time - asset_time) < CREATION_TIME_TOLERANCE:
            return True
    return False


def record_from_asset(asset: Asset) -> ImageRecord:
    mime_type, _ = mimetypes.guess_type(asset.filename)
    metadata = {"mime_type": mime_type or "image/jpeg"}
    if asset.width and asset.height:
        metadata.update(width=asset.width, height=asset.height)
    return ImageRecord(
        id=asset.id,
        source_ref=asset.uri,
        file_name=asset.filename,
        captured_at=asset.creation_time,
        metadata=metadata,
    )


async def scan_for_new(
    source: AssetSource,
    existing: Iterable[ImageRecord],
    batch_size: int = 50,
    page_size: int = 20,
) -> list[ImageRecord]:
    """Collect up to batch_size assets not yet known.

    Returns new unprocessed records for the caller to insert; nothing is
    written here.
    """
    known = list(existing)
    new_records: list[ImageRecord] = []
    after = None
    has_next_page = True

    while has_next_page and len(new_records) < batch_size:
        page = await source.list_assets(page_size, after)
        for asset in page.assets:
            if is_duplicate(asset, known):
                continue
            record = record_from_asset(asset)
            new_records.append(record)
            known.append(record)
            if len(new_records) >= batch_size:
                break
        has_next_page = page.has_next_page and page.end_cursor != after
        after = page.end_cursor

    log.info(f"Scan found {len(new_records)} new images")
    return new_records
