from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from facility_ingest.core.models import PendingWrite


class IngestError(Exception):
    """Base ingest exception."""


class InputError(IngestError):
    """Raised when the source file cannot be read or parsed."""


class ValidationError(IngestError):
    """Raised when a record is invalid."""


class InvalidRecordError(ValidationError):
    """Raised when a row has no usable facility id."""


class QueueFrozenError(IngestError):
    """Raised when a write is enqueued after the commit phase started."""


class CommitAlreadyStartedError(IngestError):
    """Raised when commit is invoked more than once."""


class StoreError(IngestError):
    """Base store exception."""


class StoreThrottledError(StoreError):
    """Raised when the store rejected writes for exceeding provisioned capacity."""

    def __init__(self, message: str, unprocessed: list[PendingWrite] | None = None) -> None:
        super().__init__(message)
        self.unprocessed = unprocessed


class StorePermanentError(StoreError):
    """Raised when a store call failed and cannot be retried."""


class CommitFailedError(StoreError):
    """Raised when a batch is still throttled after all retries."""

    def __init__(self, message: str, submitted: int = 0) -> None:
        super().__init__(message)
        self.submitted = submitted
