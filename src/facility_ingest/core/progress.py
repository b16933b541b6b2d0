from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressSnapshot:
    queued: int
    ignored: int


class ProgressReporter:
    """Debounced progress log for the accumulation phase.

    ``notify`` arms a single-shot timer when none is pending; a burst of
    records therefore yields one snapshot per interval. ``stop`` cancels the
    pending timer and silences the reporter for good.
    """

    def __init__(
        self,
        snapshot: Callable[[], ProgressSnapshot],
        interval_seconds: float = 5.0,
        on_report: Callable[[ProgressSnapshot], None] | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._snapshot = snapshot
        self._interval_seconds = interval_seconds
        self._on_report = on_report
        self._handle: asyncio.TimerHandle | None = None
        self._stopped = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def stopped(self) -> bool:
        return self._stopped

    def notify(self) -> None:
        if self._stopped or self._handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval_seconds, self._fire)

    def stop(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._stopped:
            return
        snapshot = self._snapshot()
        logger.info("ingest_progress", extra={"queued": snapshot.queued, "ignored": snapshot.ignored})
        if self._on_report:
            self._on_report(snapshot)
