from __future__ import annotations

from collections.abc import Mapping
import unicodedata
from typing import Any

from facility_ingest.core.exceptions import InvalidRecordError
from facility_ingest.core.models import NOT_AVAILABLE, Address, Facility, GeoLocation

SERVICE_SEPARATOR = "|"


def fold_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).upper()


def _canonical(value: Any) -> str | None:
    if value is None:
        return None
    # Strip after folding: NFKD turns a spacing accent into a space and drops lone combining marks.
    folded = fold_accents(str(value)).strip()
    return folded or None


def normalize_value(value: Any) -> str:
    """Accent-fold and upper-case a raw field, falling back to ``N/A`` when empty."""
    return _canonical(value) or NOT_AVAILABLE


def normalize_services(value: Any) -> tuple[str, ...]:
    if value is None:
        return (NOT_AVAILABLE,)
    services: dict[str, None] = {}
    for part in str(value).split(SERVICE_SEPARATOR):
        service = _canonical(part)
        if service is None:
            continue
        services.setdefault(service, None)
    if not services:
        return (NOT_AVAILABLE,)
    return tuple(services)


def _to_int_or_none(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _to_location(lat: Any, lng: Any) -> GeoLocation | None:
    try:
        latitude = float(lat)
        longitude = float(lng)
    except (TypeError, ValueError):
        return None
    if not (-90 <= latitude <= 90) or not (-180 <= longitude <= 180):
        return None
    return GeoLocation(latitude=latitude, longitude=longitude)


def facility_from_row(row: Mapping[str, Any]) -> Facility:
    facility_id = _to_int_or_none(row.get("co_cnes"))
    if facility_id is None:
        raise InvalidRecordError(f"row has no numeric facility id: co_cnes={row.get('co_cnes')!r}")
    return Facility(
        id=facility_id,
        region_code=_to_int_or_none(row.get("co_ibge")) or 0,
        category=normalize_value(row.get("ds_tipo_unidade")),
        schedule=normalize_value(row.get("ds_turno_atendimento")),
        name=normalize_value(row.get("no_fantasia")),
        legal_name=normalize_value(row.get("no_razao_social")),
        phone=normalize_value(row.get("nu_telefone")),
        services=normalize_services(row.get("ds_servico_especializado")),
        address=Address(
            street=normalize_value(row.get("no_logradouro")),
            number=normalize_value(row.get("nu_endereco")),
            neighborhood=normalize_value(row.get("no_bairro")),
            postal_code=normalize_value(row.get("co_cep")),
            state=normalize_value(row.get("uf")),
            city=normalize_value(row.get("municipio")),
        ),
        location=_to_location(row.get("lat"), row.get("long")),
    )
