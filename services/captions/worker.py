import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from config.settings import settings
from services.captions.captioner import CaptionProvider
from services.captions.errors import (
    CaptionError,
    InvalidTransition,
    NotFound,
    ProviderEmptyResult,
    ProviderFailure,
    ProviderUnconfigured,
)
from services.captions.models import ImageRecord
from services.captions.queue import ProcessingQueue
from services.captions.store import ImageRecordStore

log = logging.getLogger(__name__)


@dataclass
class DrainResult:
    processed: int = 0
    failed: int = 0
    skipped: int = 0  # stale queue entries and results dropped after a delete
    cancelled: bool = False

    @property
    def attempted(self) -> int:
        return self.processed + self.failed


class CaptionWorker:
    """Drains the processing queue one image at a time.

    Queue and store mutations happen under `lock`, followed by `on_change`
    (persist + notify). The provider call is the only await made outside the
    lock, so a delete can land while a caption is in flight; in that case the
    result is dropped instead of recreating the record.
    """

    def __init__(
        self,
        store: ImageRecordStore,
        queue: ProcessingQueue,
        provider: CaptionProvider,
        lock: asyncio.Lock,
        on_change: Callable[[], Awaitable[None]] | None = None,
        item_delay_seconds: float | None = None,
        max_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self.store = store
        self.queue = queue
        self.provider = provider
        self.lock = lock
        self.on_change = on_change
        self.item_delay_seconds = (
            settings.caption_item_delay_seconds if item_delay_seconds is None else item_delay_seconds
        )
        self.max_attempts = max(1, max_attempts or settings.caption_max_attempts)
        self.retry_backoff_seconds = (
            settings.caption_retry_backoff_seconds
            if retry_backoff_seconds is None
            else retry_backoff_seconds
        )

    async def process_one(self, record: ImageRecord) -> str:
        """Caption one image. Retries transient provider failures with backoff."""
        attempt = 1
        while True:
            try:
                return await self.provider.generate_short_caption(record.source_ref)
            except ProviderFailure as e:
                if attempt >= self.max_attempts:
                    raise
                delay = self.retry_backoff_seconds * 2 ** (attempt - 1)
                log.warning(
                    f"Caption attempt {attempt}/{self.max_attempts} for {record.id} failed: {e}; "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def drain(
        self,
        cancel: asyncio.Event | None = None,
        max_items: int | None = None,
        gate: Callable[[], bool] | None = None,
        generate_detailed: bool = False,
    ) -> DrainResult:
        """Process queued images until the queue is empty or the pass is stopped.

        Stops between items (never mid-call) when `cancel` is set, `max_items`
        images have been attempted, or `gate()` returns False. Raises
        ProviderUnconfigured without touching any record.
        """
        cancel = cancel or asyncio.Event()
        result = DrainResult()

        while True:
            if cancel.is_set():
                result.cancelled = True
                break
            if max_items is not None and result.attempted >= max_items:
                break
            if gate is not None and not gate():
                log.info("Drain stopped: gating conditions no longer met")
                result.cancelled = True
                break
            if not len(self.queue):
                break
            if not self.provider.is_configured():
                raise ProviderUnconfigured("Captioning provider is not configured")

            record = await self._take_next(result)
            if record is None:
                continue

            await self._run_item(record, result, generate_detailed)

            if len(self.queue) and self.item_delay_seconds > 0:
                try:
                    await asyncio.wait_for(cancel.wait(), timeout=self.item_delay_seconds)
                except TimeoutError:
                    pass

        log.info(
            f"Drain finished: processed={result.processed} failed={result.failed} "
            f"skipped={result.skipped} cancelled={result.cancelled}"
        )
        return result

    async def _take_next(self, result: DrainResult) -> ImageRecord | None:
        async with self.lock:
            image_id = self.queue.dequeue()
            if image_id is None:
                return None
            try:
                record = self.store.start_processing(image_id)
            except (NotFound, InvalidTransition) as e:
                log.warning(f"Dropping queue entry {image_id}: {e}")
                result.skipped += 1
                record = None
            try:
                await self._changed()
            except Exception:
                # Not persisted; put the image back so it is not left in processing
                if record is not None:
                    self.store.release(image_id)
                    self.queue.requeue(image_id)
                raise
            return record

    async def _run_item(self, record: ImageRecord, result: DrainResult, generate_detailed: bool):
        try:
            caption = await self.process_one(record)
        except ProviderUnconfigured:
            await self._give_back(record.id)
            raise
        except Exception as e:
            # Any other error is local to this image; the queue keeps moving
            if isinstance(e, (ProviderFailure, ProviderEmptyResult)):
                log.error(f"Captioning {record.id} failed: {e}")
            else:
                log.exception(f"Unexpected error captioning {record.id}")
            if await self._finish(record.id, error=str(e) or type(e).__name__):
                result.failed += 1
            else:
                result.skipped += 1
            return

        detailed = None
        if generate_detailed:
            try:
                detailed = await self.provider.generate_detailed_caption(record.source_ref)
            except CaptionError as e:
                # The short caption stands; the detailed one can be requested later
                log.warning(f"Detailed caption for {record.id} failed: {e}")
            except Exception:
                log.exception(f"Detailed caption for {record.id} failed")

        if await self._finish(record.id, caption=caption, detailed=detailed):
            result.processed += 1
        else:
            result.skipped += 1

    async def _finish(
        self,
        image_id: str,
        caption: str | None = None,
        detailed: str | None = None,
        error: str | None = None,
    ) -> bool:
        """Apply the outcome. Returns False if the image disappeared meanwhile."""
        async with self.lock:
            self.queue.remove(image_id)
            applied = True
            try:
                if error is None:
                    self.store.complete(image_id, caption, detailed)
                    log.info(f"Captioned {image_id}")
                else:
                    self.store.fail(image_id, error)
            except (NotFound, InvalidTransition):
                log.warning(f"Image {image_id} was deleted while processing; discarding result")
                applied = False
            await self._changed()
            return applied

    async def _give_back(self, image_id: str):
        async with self.lock:
            try:
                self.store.release(image_id)
            except (NotFound, InvalidTransition):
                return
            self.queue.requeue(image_id)
            await self._changed()

    async def _changed(self):
        if self.on_change is not None:
            await self.on_change()
