from __future__ import annotations

import asyncio
import csv
from collections.abc import AsyncIterator
from pathlib import Path

from facility_ingest.core.exceptions import InputError


class CsvFacilitySource:
    """Header-driven CSV reader yielding one trimmed row at a time.

    The file is read lazily and can be iterated only once. Control returns to
    the event loop between rows so timers scheduled during ingestion can run.
    """

    def __init__(
        self,
        path: str | Path,
        delimiter: str = ",",
        quotechar: str = '"',
        encoding: str = "utf-8",
    ) -> None:
        self._path = Path(path)
        self._delimiter = delimiter
        self._quotechar = quotechar
        self._encoding = encoding
        self._consumed = False

    @property
    def path(self) -> Path:
        return self._path

    def __aiter__(self) -> AsyncIterator[dict[str, str]]:
        return self.rows()

    async def rows(self) -> AsyncIterator[dict[str, str]]:
        if self._consumed:
            raise InputError(f"source already consumed: {self._path}")
        self._consumed = True
        try:
            handle = self._path.open("r", encoding=self._encoding, newline="")
        except OSError as exc:
            raise InputError(f"cannot open source file {self._path}: {exc}") from exc
        with handle:
            reader = csv.DictReader(handle, delimiter=self._delimiter, quotechar=self._quotechar, strict=True)
            try:
                for row in reader:
                    yield {
                        str(key).strip(): (value.strip() if isinstance(value, str) else "")
                        for key, value in row.items()
                        if key is not None
                    }
                    await asyncio.sleep(0)
            except (csv.Error, UnicodeDecodeError) as exc:
                raise InputError(f"malformed csv at line {reader.line_num} of {self._path}: {exc}") from exc
