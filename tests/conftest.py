# tests/conftest.py
import asyncio
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Settings are read at import time; keep tests off real services and real keys
_TMP = Path(tempfile.mkdtemp(prefix="memora-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'test.db'}"
os.environ["MEDIA_ROOT"] = str(_TMP / "photos")
os.environ["CLAUDE_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["CAPTION_ITEM_DELAY_SECONDS"] = "0"
os.environ["CAPTION_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["BACKGROUND_ENABLED"] = "false"

from services.captions.assets import Asset, AssetPage  # noqa: E402
from services.captions.environment import StaticEnvironmentProbe  # noqa: E402
from services.captions.errors import PermissionDenied  # noqa: E402
from services.captions.persistence import InMemoryPersistentStore  # noqa: E402
from services.captions.pipeline import CaptionPipeline  # noqa: E402


class FakeCaptionProvider:
    """Captions keyed by source_ref. A value may be a string, an exception, or a list of those (one per call)."""

    def __init__(self, captions: dict | None = None, configured: bool = True):
        self.captions = captions or {}
        self.configured = configured
        self.calls: list[str] = []
        self.detailed_calls: list[str] = []
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None  # when set, calls block until release is set

    def is_configured(self) -> bool:
        return self.configured

    async def generate_short_caption(self, source_ref: str) -> str:
        self.calls.append(source_ref)
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        outcome = self.captions.get(source_ref, f"caption for {source_ref}")
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def generate_detailed_caption(self, source_ref: str) -> str:
        self.detailed_calls.append(source_ref)
        return f"a long description of {source_ref}"


class FakeAssetSource:
    """In-memory media library, most recent first, offset cursors."""

    def __init__(self, assets: list[Asset] | None = None, denied: bool = False):
        self.assets = sorted(assets or [], key=lambda a: a.creation_time, reverse=True)
        self.denied = denied
        self.pages_requested = 0

    async def list_assets(self, limit: int, after: str | None = None) -> AssetPage:
        if self.denied:
            raise PermissionDenied("Photo library access denied")
        self.pages_requested += 1
        offset = int(after) if after else 0
        page = self.assets[offset : offset + limit]
        end = offset + len(page)
        return AssetPage(assets=page, end_cursor=str(end), has_next_page=end < len(self.assets))


BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_assets(count: int, prefix: str = "asset") -> list[Asset]:
    return [
        Asset(
            id=f"{prefix}-{i}",
            uri=f"file:///photos/{prefix}-{i}.jpg",
            filename=f"{prefix}-{i}.jpg",
            creation_time=BASE_TIME - timedelta(minutes=i),
        )
        for i in range(count)
    ]


@pytest.fixture
def provider():
    return FakeCaptionProvider()


@pytest.fixture
def asset_source():
    return FakeAssetSource(make_assets(3))


@pytest.fixture
def environment():
    return StaticEnvironmentProbe(is_on_wifi=True, is_charging=True)


@pytest.fixture
def persistence():
    return InMemoryPersistentStore()


@pytest.fixture
def pipeline(persistence, provider, asset_source, environment):
    return CaptionPipeline(
        persistence=persistence,
        provider=provider,
        asset_source=asset_source,
        environment=environment,
        item_delay_seconds=0,
        max_attempts=1,
        retry_backoff_seconds=0,
    )
