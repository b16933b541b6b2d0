from __future__ import annotations

from collections import OrderedDict

from facility_ingest.core.exceptions import QueueFrozenError
from facility_ingest.core.models import Facility, PendingWrite


class WriteQueue:
    """Pending writes keyed by facility id, drained in insertion order.

    Re-enqueueing an id replaces the earlier write and moves it to the back,
    so the drain order follows the surviving writes. Not safe for concurrent
    producers; the committer drains only after the producer is done.
    """

    def __init__(self) -> None:
        self._writes: "OrderedDict[int, PendingWrite]" = OrderedDict()
        self._ignored = 0
        self._frozen = False

    def __len__(self) -> int:
        return len(self._writes)

    def __contains__(self, key: object) -> bool:
        return key in self._writes

    @property
    def ignored(self) -> int:
        return self._ignored

    @property
    def frozen(self) -> bool:
        return self._frozen

    def size(self) -> int:
        return len(self._writes)

    def get(self, key: int) -> PendingWrite | None:
        return self._writes.get(key)

    def enqueue(self, facility: Facility) -> PendingWrite:
        if self._frozen:
            raise QueueFrozenError(f"queue is frozen, cannot enqueue facility id={facility.id}")
        write = PendingWrite(key=facility.id, facility=facility)
        self._writes.pop(write.key, None)
        self._writes[write.key] = write
        return write

    def record_ignored(self) -> None:
        self._ignored += 1

    def freeze(self) -> None:
        self._frozen = True

    def drain(self, limit: int) -> list[PendingWrite]:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        batch: list[PendingWrite] = []
        while self._writes and len(batch) < limit:
            _, write = self._writes.popitem(last=False)
            batch.append(write)
        return batch
