from __future__ import annotations

import asyncio
from decimal import Decimal
import logging
from typing import Any, Callable

import boto3
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from facility_ingest.core.exceptions import StorePermanentError, StoreThrottledError
from facility_ingest.core.models import Facility, PendingWrite
from facility_ingest.core.store import FacilityStore

logger = logging.getLogger(__name__)

THROTTLING_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
    }
)
TABLE_EXISTS_ERROR_CODE = "ResourceInUseException"


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def facility_to_item(facility: Facility) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": facility.id,
        "region_code": facility.region_code,
        "category": facility.category,
        "schedule": facility.schedule,
        "name": facility.name,
        "legal_name": facility.legal_name,
        "phone": facility.phone,
        "services": set(facility.services),
        "address": {
            "street": facility.address.street,
            "number": facility.address.number,
            "neighborhood": facility.address.neighborhood,
            "postal_code": facility.address.postal_code,
            "state": facility.address.state,
            "city": facility.address.city,
        },
    }
    if facility.location is not None:
        item["latitude"] = Decimal(str(facility.location.latitude))
        item["longitude"] = Decimal(str(facility.location.longitude))
    return item


class DynamoFacilityStore(FacilityStore):
    def __init__(
        self,
        table_name: str,
        read_capacity: int = 5,
        write_capacity: int = 5,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        profile_name: str | None = None,
        report_consumed_capacity: bool = False,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        if read_capacity <= 0 or write_capacity <= 0:
            raise ValueError("read_capacity and write_capacity must be > 0")
        self._table_name = table_name
        self._read_capacity = read_capacity
        self._write_capacity = write_capacity
        self._region_name = region_name
        self._endpoint_url = endpoint_url
        self._profile_name = profile_name
        self._report_consumed_capacity = report_consumed_capacity
        self._client_factory = client_factory
        self._client: Any = None
        self._serializer = TypeSerializer()

    @property
    def table_name(self) -> str:
        return self._table_name

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = self._client_factory() if self._client_factory else self._create_client()
        return self._client

    def _create_client(self) -> Any:
        session_kwargs: dict[str, str] = {}
        if self._profile_name:
            session_kwargs["profile_name"] = self._profile_name
        if self._region_name:
            session_kwargs["region_name"] = self._region_name
        session = boto3.session.Session(**session_kwargs)
        return session.client("dynamodb", endpoint_url=self._endpoint_url)

    async def ensure_table(self) -> None:
        client = self._get_client()
        params = {
            "TableName": self._table_name,
            "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "N"}],
            "ProvisionedThroughput": {
                "ReadCapacityUnits": self._read_capacity,
                "WriteCapacityUnits": self._write_capacity,
            },
        }
        logger.info("table_create_started", extra={"table": self._table_name})
        try:
            await asyncio.to_thread(client.create_table, **params)
        except ClientError as exc:
            if _error_code(exc) != TABLE_EXISTS_ERROR_CODE:
                logger.error("table_create_failed", extra={"table": self._table_name, "error": str(exc)})
                raise StorePermanentError(f"cannot create table {self._table_name}: {exc}") from exc
            logger.warning("table_already_exists", extra={"table": self._table_name})
        except BotoCoreError as exc:
            raise StorePermanentError(f"cannot create table {self._table_name}: {exc}") from exc
        try:
            waiter = client.get_waiter("table_exists")
            await asyncio.to_thread(waiter.wait, TableName=self._table_name)
        except (BotoCoreError, ClientError) as exc:
            raise StorePermanentError(f"table {self._table_name} did not become available: {exc}") from exc
        logger.info("table_ready", extra={"table": self._table_name})

    async def batch_write(self, writes: list[PendingWrite]) -> int:
        if not writes:
            return 0
        client = self._get_client()
        params: dict[str, Any] = {
            "RequestItems": {self._table_name: [self._to_request(write) for write in writes]},
            "ReturnConsumedCapacity": "TOTAL" if self._report_consumed_capacity else "NONE",
        }
        try:
            response = await asyncio.to_thread(client.batch_write_item, **params)
        except ClientError as exc:
            if _error_code(exc) in THROTTLING_ERROR_CODES:
                raise StoreThrottledError(
                    f"batch write throttled: table={self._table_name}, code={_error_code(exc)}",
                    unprocessed=list(writes),
                ) from exc
            raise StorePermanentError(f"batch write failed: table={self._table_name}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorePermanentError(f"batch write failed: table={self._table_name}: {exc}") from exc

        if self._report_consumed_capacity:
            for capacity in response.get("ConsumedCapacity", []):
                logger.info(
                    "batch_write_consumed_capacity",
                    extra={"table": capacity.get("TableName"), "capacity_units": capacity.get("CapacityUnits")},
                )
        unprocessed = self._unprocessed_writes(response, writes)
        if unprocessed:
            raise StoreThrottledError(
                f"batch write partially processed: table={self._table_name}, unprocessed={len(unprocessed)}",
                unprocessed=unprocessed,
            )
        return len(writes)

    def _to_request(self, write: PendingWrite) -> dict[str, Any]:
        item = facility_to_item(write.facility)
        return {"PutRequest": {"Item": {key: self._serializer.serialize(value) for key, value in item.items()}}}

    def _unprocessed_writes(self, response: dict[str, Any], writes: list[PendingWrite]) -> list[PendingWrite]:
        requests = response.get("UnprocessedItems", {}).get(self._table_name, [])
        if not requests:
            return []
        by_key = {write.key: write for write in writes}
        unprocessed: list[PendingWrite] = []
        for request in requests:
            key = int(request["PutRequest"]["Item"]["id"]["N"])
            write = by_key.get(key)
            if write is not None:
                unprocessed.append(write)
        return unprocessed
