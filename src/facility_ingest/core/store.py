from __future__ import annotations

from abc import ABC, abstractmethod

from facility_ingest.core.models import PendingWrite


class FacilityStore(ABC):
    @abstractmethod
    async def ensure_table(self) -> None:
        """Provision the target table; an existing table counts as success."""
        raise NotImplementedError

    @abstractmethod
    async def batch_write(self, writes: list[PendingWrite]) -> int:
        """Replace-write every facility keyed by id.

        Raises ``StoreThrottledError`` carrying the unprocessed writes when the
        store is over capacity and ``StorePermanentError`` for anything else.
        """
        raise NotImplementedError

    async def flush(self) -> None:
        """Called once after the last batch; stores that buffer or append may settle here."""
        return None
