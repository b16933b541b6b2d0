from __future__ import annotations

from dataclasses import dataclass

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True)
class GeoLocation:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Address:
    street: str = NOT_AVAILABLE
    number: str = NOT_AVAILABLE
    neighborhood: str = NOT_AVAILABLE
    postal_code: str = NOT_AVAILABLE
    state: str = NOT_AVAILABLE
    city: str = NOT_AVAILABLE


@dataclass(frozen=True)
class Facility:
    id: int
    region_code: int
    category: str
    schedule: str
    name: str
    legal_name: str
    phone: str
    services: tuple[str, ...]
    address: Address
    location: GeoLocation | None = None


@dataclass(frozen=True)
class PendingWrite:
    key: int
    facility: Facility
