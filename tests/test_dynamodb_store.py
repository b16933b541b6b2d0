from __future__ import annotations

from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from facility_ingest.core.exceptions import StorePermanentError, StoreThrottledError
from facility_ingest.core.models import Address, Facility, GeoLocation, PendingWrite
from facility_ingest.stores.dynamodb import DynamoFacilityStore, facility_to_item


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


def build_write(facility_id: int, location: GeoLocation | None = None) -> PendingWrite:
    facility = Facility(
        id=facility_id,
        region_code=355030,
        category="HOSPITAL GERAL",
        schedule="ATENDIMENTO CONTINUO",
        name="HOSPITAL MUNICIPAL",
        legal_name="N/A",
        phone="N/A",
        services=("CARDIOLOGIA", "URGENCIA"),
        address=Address(city="SAO PAULO", state="SP"),
        location=location,
    )
    return PendingWrite(key=facility_id, facility=facility)


class FakeWaiter:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def wait(self, **kwargs: Any) -> None:
        self.calls.append(kwargs)


class FakeDynamoClient:
    def __init__(
        self,
        create_error: Exception | None = None,
        write_error: Exception | None = None,
        responses: list[dict[str, Any]] | None = None,
    ) -> None:
        self.create_calls: list[dict[str, Any]] = []
        self.write_calls: list[dict[str, Any]] = []
        self.waiter = FakeWaiter()
        self._create_error = create_error
        self._write_error = write_error
        self._responses = responses or []

    def create_table(self, **kwargs: Any) -> dict[str, Any]:
        self.create_calls.append(kwargs)
        if self._create_error:
            raise self._create_error
        return {"TableDescription": {"TableName": kwargs["TableName"]}}

    def get_waiter(self, name: str) -> FakeWaiter:
        assert name == "table_exists"
        return self.waiter

    def batch_write_item(self, **kwargs: Any) -> dict[str, Any]:
        self.write_calls.append(kwargs)
        if self._write_error:
            raise self._write_error
        if self._responses:
            return self._responses.pop(0)
        return {"UnprocessedItems": {}}


def build_store(client: FakeDynamoClient, **kwargs: Any) -> DynamoFacilityStore:
    return DynamoFacilityStore("health_facilities", write_capacity=10, client_factory=lambda: client, **kwargs)


@pytest.mark.asyncio
async def test_dynamodb_store_creates_table_with_numeric_hash_key() -> None:
    client = FakeDynamoClient()

    await build_store(client).ensure_table()

    [params] = client.create_calls
    assert params["TableName"] == "health_facilities"
    assert params["KeySchema"] == [{"AttributeName": "id", "KeyType": "HASH"}]
    assert params["AttributeDefinitions"] == [{"AttributeName": "id", "AttributeType": "N"}]
    assert params["ProvisionedThroughput"] == {"ReadCapacityUnits": 5, "WriteCapacityUnits": 10}
    assert client.waiter.calls == [{"TableName": "health_facilities"}]


@pytest.mark.asyncio
async def test_dynamodb_store_treats_existing_table_as_success() -> None:
    client = FakeDynamoClient(create_error=client_error("ResourceInUseException", "CreateTable"))

    await build_store(client).ensure_table()

    assert client.waiter.calls == [{"TableName": "health_facilities"}]


@pytest.mark.asyncio
async def test_dynamodb_store_raises_on_other_provisioning_errors() -> None:
    client = FakeDynamoClient(create_error=client_error("AccessDeniedException", "CreateTable"))

    with pytest.raises(StorePermanentError):
        await build_store(client).ensure_table()


@pytest.mark.asyncio
async def test_dynamodb_store_sends_typed_put_requests() -> None:
    client = FakeDynamoClient()
    writes = [build_write(1, location=GeoLocation(latitude=-23.5, longitude=-46.6)), build_write(2)]

    written = await build_store(client).batch_write(writes)

    assert written == 2
    [call] = client.write_calls
    assert call["ReturnConsumedCapacity"] == "NONE"
    requests = call["RequestItems"]["health_facilities"]
    first = requests[0]["PutRequest"]["Item"]
    assert first["id"] == {"N": "1"}
    assert first["category"] == {"S": "HOSPITAL GERAL"}
    assert sorted(first["services"]["SS"]) == ["CARDIOLOGIA", "URGENCIA"]
    assert first["address"]["M"]["city"] == {"S": "SAO PAULO"}
    assert first["latitude"] == {"N": "-23.5"}
    assert "latitude" not in requests[1]["PutRequest"]["Item"]


@pytest.mark.asyncio
async def test_dynamodb_store_maps_unprocessed_items_to_throttling() -> None:
    writes = [build_write(1), build_write(2), build_write(3)]
    unprocessed = {"PutRequest": {"Item": {"id": {"N": "2"}}}}
    client = FakeDynamoClient(responses=[{"UnprocessedItems": {"health_facilities": [unprocessed]}}])

    with pytest.raises(StoreThrottledError) as exc_info:
        await build_store(client).batch_write(writes)

    assert exc_info.value.unprocessed == [writes[1]]


@pytest.mark.asyncio
async def test_dynamodb_store_maps_throughput_errors_to_throttling() -> None:
    writes = [build_write(1)]
    client = FakeDynamoClient(write_error=client_error("ProvisionedThroughputExceededException", "BatchWriteItem"))

    with pytest.raises(StoreThrottledError) as exc_info:
        await build_store(client).batch_write(writes)

    assert exc_info.value.unprocessed == writes


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        client_error("ValidationException", "BatchWriteItem"),
        EndpointConnectionError(endpoint_url="http://localhost:8000"),
    ],
)
async def test_dynamodb_store_maps_other_errors_to_permanent(error: Exception) -> None:
    client = FakeDynamoClient(write_error=error)

    with pytest.raises(StorePermanentError):
        await build_store(client).batch_write([build_write(1)])


@pytest.mark.asyncio
async def test_dynamodb_store_requests_consumed_capacity_when_enabled() -> None:
    client = FakeDynamoClient(
        responses=[{"UnprocessedItems": {}, "ConsumedCapacity": [{"TableName": "health_facilities", "CapacityUnits": 2.0}]}]
    )

    await build_store(client, report_consumed_capacity=True).batch_write([build_write(1)])

    assert client.write_calls[0]["ReturnConsumedCapacity"] == "TOTAL"


@pytest.mark.asyncio
async def test_dynamodb_store_skips_empty_batches() -> None:
    client = FakeDynamoClient()

    assert await build_store(client).batch_write([]) == 0
    assert client.write_calls == []


def test_facility_to_item_omits_missing_location() -> None:
    item = facility_to_item(build_write(1).facility)

    assert item["id"] == 1
    assert item["services"] == {"CARDIOLOGIA", "URGENCIA"}
    assert "latitude" not in item
