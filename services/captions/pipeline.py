"""
Captioning pipeline: the one object that owns image records, the processing
queue, user settings and the last scan time.

Both triggers go through it:
- background: a periodic wake-up from the Scheduler; scans when the scan
  policy allows, then captions at most `background_max_items` images;
- foreground: an explicit "process now" from the user; drains the whole queue.

Every mutation happens under a single asyncio.Lock and is followed by a
whole-collection write to the PersistentStore and a snapshot to subscribers.
A second lock guards the drain entry point so that only one drain runs at a
time, whichever trigger started it.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from config.settings import settings as app_settings
from services.captions.assets import AssetSource, scan_for_new
from services.captions.captioner import CaptionProvider
from services.captions.environment import EnvironmentProbe
from services.captions.errors import (
    AlreadyProcessing,
    InvalidTransition,
    PermissionDenied,
    ProviderUnconfigured,
)
from services.captions.models import (
    CaptionSettings,
    ImageRecord,
    ImageStatus,
    ScanPolicyConfig,
    generate_image_id,
    utcnow,
)
from services.captions.persistence import PersistentStore
from services.captions.policy import environment_permits, should_scan
from services.captions.queue import ProcessingQueue
from services.captions.scheduler import Scheduler
from services.captions.store import ImageRecordStore
from services.captions.worker import CaptionWorker, DrainResult

log = logging.getLogger(__name__)

INTERRUPTED_REASON = "Processing was interrupted before it finished"


class InvocationContext(StrEnum):
    BACKGROUND = "background"
    FOREGROUND = "foreground"


class BackgroundResult(StrEnum):
    NEW_DATA = "new_data"
    NO_DATA = "no_data"
    FAILED = "failed"


@dataclass
class ScanResult:
    new_images: list[ImageRecord] = field(default_factory=list)
    enqueued: int = 0

    @property
    def new_images_found(self) -> int:
        return len(self.new_images)


@dataclass
class PipelineSnapshot:
    """Everything a presentation layer needs to re-render."""

    images: list[ImageRecord]
    queue_length: int
    is_processing: bool
    last_scan_at: datetime | None

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in ImageStatus}
        for image in self.images:
            counts[image.status.value] += 1
        return counts


Subscriber = Callable[[PipelineSnapshot], None]


class CaptionPipeline:
    def __init__(
        self,
        persistence: PersistentStore,
        provider: CaptionProvider,
        asset_source: AssetSource,
        environment: EnvironmentProbe,
        clock: Callable[[], datetime] = utcnow,
        local_clock: Callable[[], datetime] | None = None,
        scan_batch_size: int | None = None,
        scan_page_size: int | None = None,
        background_max_items: int | None = None,
        item_delay_seconds: float | None = None,
        max_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.persistence = persistence
        self.provider = provider
        self.asset_source = asset_source
        self.environment = environment
        self.clock = clock
        # Time-of-day gating uses the user's local time
        self.local_clock = local_clock or (lambda: self.clock().astimezone())
        self.scan_batch_size = scan_batch_size or app_settings.scan_batch_size
        self.scan_page_size = scan_page_size or app_settings.scan_page_size
        self.background_max_items = background_max_items or app_settings.background_max_items

        self.store = ImageRecordStore(clock=clock)
        self.queue = ProcessingQueue()
        self.settings = CaptionSettings()
        self.last_scan_at: datetime | None = None

        self._lock = asyncio.Lock()
        self._drain_lock = asyncio.Lock()
        self._cancel = asyncio.Event()
        self._subscribers: list[Subscriber] = []
        self._scheduler: Scheduler | None = None

        self.worker = CaptionWorker(
            self.store,
            self.queue,
            provider,
            self._lock,
            on_change=self._commit,
            item_delay_seconds=item_delay_seconds,
            max_attempts=max_attempts,
            retry_backoff_seconds=retry_backoff_seconds,
        )

    # --- State ---

    @property
    def is_processing(self) -> bool:
        return self._drain_lock.locked()

    def policy_snapshot(self) -> ScanPolicyConfig:
        return self.settings.scan.model_copy(update={"last_scan_at": self.last_scan_at})

    def snapshot(self) -> PipelineSnapshot:
        return PipelineSnapshot(
            images=self.store.records(),
            queue_length=len(self.queue),
            is_processing=self.is_processing,
            last_scan_at=self.last_scan_at,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call `callback` with a fresh snapshot after every change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def load(self):
        """Restore state from the persistent store."""
        images = await self.persistence.load_images()
        queued = await self.persistence.load_queue()
        caption_settings = await self.persistence.load_settings()
        last_scan_at = await self.persistence.load_last_scan_at()

        async with self._lock:
            self.store = ImageRecordStore(images, clock=self.clock)
            self.worker.store = self.store
            self.settings = caption_settings
            self.last_scan_at = last_scan_at
            self.store.recover_interrupted(INTERRUPTED_REASON)

            self.queue.clear()
            for image_id in queued:
                if image_id in self.store and self.store.get(image_id).status == ImageStatus.UNPROCESSED:
                    self.queue.enqueue(image_id)
                else:
                    log.warning(f"Dropping stale queue entry {image_id}")
            await self._commit()

        log.info(
            f"Loaded {len(self.store)} images, {len(self.queue)} queued, last scan {self.last_scan_at}"
        )

    # --- Images ---

    async def add_image(
        self,
        source_ref: str,
        file_name: str = "",
        image_id: str | None = None,
        captured_at: datetime | None = None,
        metadata: dict | None = None,
    ) -> ImageRecord:
        """Register a captured or imported image. Known ids are returned unchanged."""
        async with self._lock:
            image_id = image_id or generate_image_id()
            if image_id in self.store:
                return self.store.get(image_id)

            record = self.store.add(
                ImageRecord(
                    id=image_id,
                    source_ref=source_ref,
                    file_name=file_name,
                    captured_at=captured_at,
                    metadata=metadata or {},
                    created_at=self.clock(),
                )
            )
            if self.settings.processing.auto_process_on_import:
                self.queue.enqueue(record.id)
            await self._commit()

        log.info(f"Added image {record.id} ({file_name or source_ref[:60]})")
        return record

    async def get_image(self, image_id: str) -> ImageRecord:
        return self.store.get(image_id)

    async def enqueue(self, image_id: str) -> bool:
        """Queue an unprocessed image. Returns False if it was already queued."""
        async with self._lock:
            record = self.store.get(image_id)
            if record.status != ImageStatus.UNPROCESSED:
                raise InvalidTransition(f"Cannot queue image {image_id} while {record.status}")
            added = self.queue.enqueue(image_id)
            if added:
                await self._commit()
            return added

    async def reprocess(self, image_id: str) -> ImageRecord:
        """Reset an image to unprocessed. Does not queue it."""
        async with self._lock:
            record = self.store.reprocess(image_id)
            await self._commit()
        log.info(f"Reset image {image_id} for reprocessing")
        return record

    async def delete(self, image_id: str) -> ImageRecord:
        async with self._lock:
            record = self.store.remove(image_id)
            self.queue.remove(image_id)
            await self._commit()
        log.info(f"Deleted image {image_id}")
        return record

    async def generate_detailed_caption(self, image_id: str, force: bool = False) -> ImageRecord:
        """Attach the long description to a processed image. Idempotent unless forced."""
        record = self.store.get(image_id)
        if record.status != ImageStatus.PROCESSED:
            raise InvalidTransition(
                f"Image {image_id} needs a caption before a detailed one ({record.status})"
            )
        if record.detailed_caption and not force:
            return record

        text = await self.provider.generate_detailed_caption(record.source_ref)

        async with self._lock:
            # The image may have been deleted or reprocessed during the call
            record = self.store.set_detailed_caption(image_id, text)
            await self._commit()
        return record

    # --- Settings ---

    async def update_settings(self, caption_settings: CaptionSettings) -> CaptionSettings:
        async with self._lock:
            self.settings = caption_settings
            await self.persistence.save_settings(caption_settings)
            self._notify()
        log.info(f"Settings updated: auto_scan={caption_settings.scan.auto_scan_enabled}")
        return caption_settings

    # --- Scanning ---

    async def scan_now(self) -> ScanResult:
        """Look for new photos regardless of scan policy."""
        existing = self.store.records()
        new_records = await scan_for_new(
            self.asset_source,
            existing,
            batch_size=self.scan_batch_size,
            page_size=self.scan_page_size,
        )

        result = ScanResult()
        async with self._lock:
            auto_process = self.settings.processing.auto_process_on_import
            for record in new_records:
                # Another trigger may have added it while the scan was paging
                if record.id in self.store:
                    continue
                record.created_at = self.clock()
                result.new_images.append(self.store.add(record))
                if auto_process and self.queue.enqueue(record.id):
                    result.enqueued += 1

            self.last_scan_at = self.clock()
            await self.persistence.save_last_scan_at(self.last_scan_at)
            await self._commit()

        log.info(f"Scan added {result.new_images_found} images, queued {result.enqueued}")
        return result

    # --- Processing ---

    async def drain(self, context: InvocationContext) -> DrainResult:
        """Caption queued images. One drain at a time, whichever trigger asks.

        The context only selects gating and batch size: background drains are
        capped and stop as soon as the environment gates fail; foreground
        drains empty the queue and honour the gates only if configured to.
        """
        if self._drain_lock.locked():
            raise AlreadyProcessing("Images are already being processed")

        async with self._drain_lock:
            self._cancel.clear()
            self._notify()
            processing = self.settings.processing
            if context == InvocationContext.BACKGROUND:
                max_items, gate = self.background_max_items, self._environment_gate
            else:
                max_items = None
                gate = self._environment_gate if processing.foreground_honors_gates else None

            try:
                return await self.worker.drain(
                    cancel=self._cancel,
                    max_items=max_items,
                    gate=gate,
                    generate_detailed=processing.generate_detailed_caption,
                )
            finally:
                self._cancel.clear()

    async def process_now(self) -> DrainResult:
        try:
            return await self.drain(InvocationContext.FOREGROUND)
        finally:
            self._notify()

    def cancel(self):
        """Stop the running drain after the image currently in flight."""
        if self.is_processing:
            log.info("Cancelling drain")
            self._cancel.set()

    async def run_background(self) -> BackgroundResult:
        """One periodic wake-up. Never raises."""
        try:
            scan_policy = self.policy_snapshot()
            env = self.environment.snapshot()
            now = self.local_clock()
            found = 0

            if should_scan(scan_policy, now, env.is_on_wifi, env.is_charging):
                found = (await self.scan_now()).new_images_found
            else:
                log.info("Background scan skipped by scan policy")

            if not environment_permits(scan_policy, now, env.is_on_wifi, env.is_charging):
                log.info("Background processing skipped: network/power/time gates not met")
                return BackgroundResult.NEW_DATA if found else BackgroundResult.NO_DATA
            if not len(self.queue):
                return BackgroundResult.NEW_DATA if found else BackgroundResult.NO_DATA

            drained = await self.drain(InvocationContext.BACKGROUND)
        except (PermissionDenied, ProviderUnconfigured) as e:
            log.warning(f"Background run aborted: {e}")
            return BackgroundResult.NO_DATA
        except AlreadyProcessing:
            log.info("Background run skipped: a drain is already running")
            return BackgroundResult.NO_DATA
        except Exception:
            log.exception("Background run failed")
            return BackgroundResult.FAILED
        finally:
            self._notify()

        if found or drained.processed:
            return BackgroundResult.NEW_DATA
        return BackgroundResult.FAILED if drained.failed else BackgroundResult.NO_DATA

    # --- Background registration ---

    async def start_background(self, scheduler: Scheduler, interval_seconds: float | None = None):
        interval = interval_seconds or app_settings.background_interval_seconds
        self._scheduler = scheduler
        # The callback closes over this pipeline, never over module state
        scheduler.register_periodic(interval, self.run_background)

    async def stop_background(self):
        self.cancel()
        if self._scheduler is not None:
            await self._scheduler.unregister()
            self._scheduler = None

    def scheduler_status(self) -> str | None:
        return self._scheduler.status().value if self._scheduler is not None else None

    # --- Internals ---

    def _environment_gate(self) -> bool:
        env = self.environment.snapshot()
        return environment_permits(
            self.settings.scan, self.local_clock(), env.is_on_wifi, env.is_charging
        )

    async def _commit(self):
        """Persist images and queue, then notify. Caller holds the lock."""
        await self.persistence.save_images(self.store.records())
        await self.persistence.save_queue(self.queue.ids())
        self._notify()

    def _notify(self):
        if not self._subscribers:
            return
        snap = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snap)
            except Exception:
                log.exception("Pipeline subscriber failed")


__all__ = [
    "BackgroundResult",
    "CaptionPipeline",
    "InvocationContext",
    "PipelineSnapshot",
    "ScanResult",
]
