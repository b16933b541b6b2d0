from __future__ import annotations

from collections.abc import Iterable

from facility_ingest.core.normalizer import fold_accents

# Only hospitals, clinics, emergency units and similar care facilities are kept.
DEFAULT_DENIED_CATEGORIES: tuple[str, ...] = (
    "COOPERATIVA",
    "CENTRAL DE ",
    "TELESSAUDE",
    "VIGILANCIA",
    "N/A",
    "HOME CARE",
    "RESIDENCIAL",
    "PSICOSSOCIAL",
    "CONSULTORIO",
    "APOIO",
    "FARMACIA",
    "LABORATORIO",
    "PREVENCAO",
    "PARTO",
    "OFICINA ORTOPEDICA",
)


class CategoryFilter:
    def __init__(self, denied: Iterable[str] = DEFAULT_DENIED_CATEGORIES) -> None:
        # Entries are folded but not stripped: "CENTRAL DE " keeps its trailing space.
        self._denied = tuple(fold_accents(entry) for entry in denied if entry.strip())

    @property
    def denied(self) -> tuple[str, ...]:
        return self._denied

    def accepts(self, category: str) -> bool:
        return not any(entry in category for entry in self._denied)
