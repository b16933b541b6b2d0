from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path

from facility_ingest.core.exceptions import StorePermanentError
from facility_ingest.core.models import Address, Facility, GeoLocation, PendingWrite
from facility_ingest.core.store import FacilityStore

# Anything a hand-edited or truncated file can raise while being decoded.
_DECODE_ERRORS = (ValueError, KeyError, TypeError, AttributeError)


def _serialize(facility: Facility) -> dict:
    payload = asdict(facility)
    payload["services"] = list(facility.services)
    return payload


def _deserialize(payload: dict) -> Facility:
    location = payload.get("location")
    return Facility(
        id=int(payload["id"]),
        region_code=int(payload["region_code"]),
        category=str(payload["category"]),
        schedule=str(payload["schedule"]),
        name=str(payload["name"]),
        legal_name=str(payload["legal_name"]),
        phone=str(payload["phone"]),
        services=tuple(payload["services"]),
        address=Address(**payload["address"]),
        location=GeoLocation(**location) if location else None,
    )


def _dump_line(facility: Facility) -> str:
    return json.dumps(_serialize(facility), ensure_ascii=True) + "\n"


class JsonlFacilityStore(FacilityStore):
    """Local file store keyed by facility id, used for dry runs.

    Batches are appended; the last line for an id wins on read. ``flush``
    compacts the file to one line per id.
    """

    def __init__(self, file_path: str) -> None:
        self._file = Path(file_path)
        self._index: dict[int, Facility] | None = None
        self._dirty = False
        self._needs_newline = False

    async def ensure_table(self) -> None:
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            self._file.touch(exist_ok=True)
        except OSError as exc:
            raise StorePermanentError(f"cannot create {self._file}: {exc}") from exc

    async def batch_write(self, writes: list[PendingWrite]) -> int:
        if not writes:
            return 0
        index = self._load_index()
        try:
            with self._file.open("a", encoding="utf-8") as handle:
                if self._needs_newline:
                    handle.write("\n")
                    self._needs_newline = False
                for write in writes:
                    handle.write(_dump_line(write.facility))
        except OSError as exc:
            raise StorePermanentError(f"cannot write {self._file}: {exc}") from exc
        for write in writes:
            index[write.key] = write.facility
        self._dirty = True
        return len(writes)

    async def flush(self) -> None:
        if not self._dirty or self._index is None:
            return
        lines = [_dump_line(facility) for facility in self._index.values()]
        try:
            self._file.write_text("".join(lines), encoding="utf-8")
        except OSError as exc:
            raise StorePermanentError(f"cannot compact {self._file}: {exc}") from exc
        self._dirty = False

    def read_all(self) -> dict[int, Facility]:
        try:
            if not self._file.exists():
                return {}
            latest: dict[int, Facility] = {}
            with self._file.open(encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    facility = _deserialize(json.loads(line))
                    latest[facility.id] = facility
        except OSError as exc:
            raise StorePermanentError(f"cannot read {self._file}: {exc}") from exc
        except _DECODE_ERRORS as exc:
            raise StorePermanentError(f"corrupt record in {self._file}: {exc}") from exc
        return latest

    def _load_index(self) -> dict[int, Facility]:
        if self._index is None:
            self._index = self.read_all()
            self._needs_newline = self._ends_without_newline()
        return self._index

    def _ends_without_newline(self) -> bool:
        try:
            with self._file.open("rb") as handle:
                handle.seek(0, 2)
                if handle.tell() == 0:
                    return False
                handle.seek(-1, 2)
                return handle.read(1) != b"\n"
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorePermanentError(f"cannot read {self._file}: {exc}") from exc
