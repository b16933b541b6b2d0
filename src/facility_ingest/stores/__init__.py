"""Facility store adapters."""

from facility_ingest.stores.dynamodb import DynamoFacilityStore
from facility_ingest.stores.jsonl import JsonlFacilityStore

__all__ = [
    "DynamoFacilityStore",
    "JsonlFacilityStore",
]
