from collections import OrderedDict
from collections.abc import Iterable, Iterator


class ProcessingQueue:
    """FIFO of image ids awaiting a caption. An id appears at most once."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: OrderedDict[str, None] = OrderedDict()
        for image_id in ids:
            self.enqueue(image_id)

    def enqueue(self, image_id: str) -> bool:
        """Append an id. Returns False (and changes nothing) if it is already queued."""
        if image_id in self._ids:
            return False
        self._ids[image_id] = None
        return True

    def dequeue(self) -> str | None:
        if not self._ids:
            return None
        image_id, _ = self._ids.popitem(last=False)
        return image_id

    def requeue(self, image_id: str) -> None:
        """Put an id back at the head, e.g. when a pass aborts before the provider ran."""
        self._ids[image_id] = None
        self._ids.move_to_end(image_id, last=False)

    def remove(self, image_id: str) -> bool:
        if image_id not in self._ids:
            return False
        del self._ids[image_id]
        return True

    def contains(self, image_id: str) -> bool:
        return image_id in self._ids

    def ids(self) -> list[str]:
        return list(self._ids)

    def clear(self) -> None:
        self._ids.clear()

    def __contains__(self, image_id: object) -> bool:
        return image_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))
