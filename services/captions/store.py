import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from services.captions.errors import InvalidTransition, NotFound
from services.captions.models import ImageRecord, ImageStatus, utcnow

log = logging.getLogger(__name__)


class ImageRecordStore:
    """The authoritative set of image records and their lifecycle.

    Lifecycle:
        unprocessed -> processing -> processed | error
        processed | error -> unprocessed   (reprocess only)

    Not thread-safe on its own; callers serialize access (see CaptionPipeline).
    Getters hand out copies so observers never see a half-applied change.
    """

    def __init__(
        self,
        records: Iterable[ImageRecord] = (),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._records: dict[str, ImageRecord] = {}
        self._clock = clock
        for record in records:
            self.add(record)

    # --- Reads ---

    def get(self, image_id: str) -> ImageRecord:
        return self._get(image_id).model_copy(deep=True)

    def contains(self, image_id: str) -> bool:
        return image_id in self._records

    def records(self) -> list[ImageRecord]:
        return [r.model_copy(deep=True) for r in self._records.values()]

    def ids_with_status(self, status: ImageStatus) -> list[str]:
        return [r.id for r in self._records.values() if r.status == status]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._records

    # --- Membership ---

    def add(self, record: ImageRecord) -> ImageRecord:
        if record.id in self._records:
            raise ValueError(f"Image {record.id} already exists")
        if record.caption and record.status != ImageStatus.PROCESSED:
            raise ValueError(f"Image {record.id} has a caption but is {record.status}")
        self._records[record.id] = record.model_copy(deep=True)
        return self.get(record.id)

    def remove(self, image_id: str) -> ImageRecord:
        record = self._get(image_id)
        del self._records[image_id]
        return record

    # --- Transitions ---

    def start_processing(self, image_id: str) -> ImageRecord:
        record = self._get(image_id)
        self._require(record, ImageStatus.UNPROCESSED, "start processing")
        record.status = ImageStatus.PROCESSING
        record.processing_started_at = self._clock()
        return record.model_copy(deep=True)

    def complete(
        self,
        image_id: str,
        caption: str,
        detailed_caption: str | None = None,
    ) -> ImageRecord:
        if not caption or not caption.strip():
            raise ValueError("A processed image needs a non-empty caption")
        record = self._get(image_id)
        self._require(record, ImageStatus.PROCESSING, "complete")
        record.status = ImageStatus.PROCESSED
        record.caption = caption.strip()
        if detailed_caption:
            record.detailed_caption = detailed_caption.strip()
        record.error = None
        record.processing_completed_at = self._clock()
        return record.model_copy(deep=True)

    def fail(self, image_id: str, reason: str) -> ImageRecord:
        record = self._get(image_id)
        self._require(record, ImageStatus.PROCESSING, "fail")
        record.status = ImageStatus.ERROR
        record.error = reason or "Processing failed"
        record.caption = None
        record.processing_completed_at = self._clock()
        return record.model_copy(deep=True)

    def release(self, image_id: str) -> ImageRecord:
        """Hand a processing image back untouched, when a pass aborts before the provider ran."""
        record = self._get(image_id)
        self._require(record, ImageStatus.PROCESSING, "release")
        record.status = ImageStatus.UNPROCESSED
        record.processing_started_at = None
        return record.model_copy(deep=True)

    def reprocess(self, image_id: str) -> ImageRecord:
        record = self._get(image_id)
        if record.status not in (ImageStatus.PROCESSED, ImageStatus.ERROR):
            raise InvalidTransition(f"Cannot reprocess image {image_id} while {record.status}")
        record.status = ImageStatus.UNPROCESSED
        record.caption = None
        record.detailed_caption = None
        record.error = None
        record.processing_started_at = None
        record.processing_completed_at = None
        return record.model_copy(deep=True)

    def set_detailed_caption(self, image_id: str, text: str) -> ImageRecord:
        record = self._get(image_id)
        self._require(record, ImageStatus.PROCESSED, "attach a detailed caption to")
        record.detailed_caption = text.strip()
        return record.model_copy(deep=True)

    def recover_interrupted(self, reason: str) -> list[str]:
        """Mark images left in processing by a previous run as failed."""
        stale = self.ids_with_status(ImageStatus.PROCESSING)
        for image_id in stale:
            self.fail(image_id, reason)
        if stale:
            log.warning(f"Recovered {len(stale)} interrupted images: {stale}")
        return stale

    def _get(self, image_id: str) -> ImageRecord:
        record = self._records.get(image_id)
        if record is None:
            raise NotFound(image_id)
        return record

    @staticmethod
    def _require(record: ImageRecord, status: ImageStatus, action: str):
        if record.status != status:
            raise InvalidTransition(f"Cannot {action} image {record.id} while {record.status}")
