import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
import respx

from bookingsync.dedup import RequestDeduplicator
from bookingsync.errors import ConfigurationError, RemoteAuthorityError
from bookingsync.services.hapio_client import HapioClient
from bookingsync.utils.timeutils import format_for_hapio

BASE_URL = "https://hapio.test/v1"


def make_client(**kwargs) -> HapioClient:
    kwargs.setdefault("deduplicator", RequestDeduplicator())
    return HapioClient(base_url=BASE_URL, api_token="token-123", **kwargs)


def test_format_for_hapio_uses_zone_offset_and_drops_microseconds():
    value = datetime(2030, 11, 17, 15, 0, 0, 123456, tzinfo=timezone.utc)
    assert format_for_hapio(value) == "2030-11-17T15:00:00+00:00"
    assert format_for_hapio(value, "America/New_York") == "2030-11-17T10:00:00-05:00"
    assert format_for_hapio(value, "Not/AZone") == "2030-11-17T15:00:00+00:00"


@pytest.mark.asyncio
@respx.mock
async def test_create_temporary_booking_sends_hold():
    route = respx.post(f"{BASE_URL}/bookings").respond(
        201,
        json={
            "data": {
                "id": "bk-1",
                "service_id": "svc-1",
                "location_id": "loc-1",
                "starts_at": "2030-11-17T10:00:00+00:00",
                "ends_at": "2030-11-17T11:00:00+00:00",
                "is_temporary": True,
            }
        },
    )

    booking = await make_client().create_temporary_booking(
        service_id="svc-1",
        location_id="loc-1",
        starts_at=datetime(2030, 11, 17, 10, 0, tzinfo=timezone.utc),
        ends_at=datetime(2030, 11, 17, 11, 0, tzinfo=timezone.utc),
        metadata={"source": "website"},
    )

    assert booking.id == "bk-1"
    assert booking.is_temporary is True
    request = route.calls[0].request
    assert request.headers["Authorization"] == "Bearer token-123"
    body = json.loads(request.content)
    assert body["is_temporary"] is True
    assert body["starts_at"] == "2030-11-17T10:00:00+00:00"
    assert body["metadata"] == {"source": "website"}
    assert "resource_id" not in body


@pytest.mark.asyncio
@respx.mock
async def test_confirm_and_update_patch_the_booking():
    route = respx.patch(f"{BASE_URL}/bookings/bk-1").respond(200, json={"data": {"id": "bk-1", "is_temporary": False}})
    client = make_client()

    confirmed = await client.confirm_booking("bk-1", metadata={"paymentIntentId": "pi_1"})
    await client.update_booking(
        "bk-1",
        starts_at=datetime(2030, 11, 18, 10, 0, tzinfo=timezone.utc),
        ends_at=datetime(2030, 11, 18, 11, 0, tzinfo=timezone.utc),
        ignore_schedule=True,
    )

    assert confirmed.is_temporary is False
    confirm_body = json.loads(route.calls[0].request.content)
    update_body = json.loads(route.calls[1].request.content)
    assert confirm_body == {"is_temporary": False, "metadata": {"paymentIntentId": "pi_1"}}
    assert update_body["ignore_schedule"] is True


@pytest.mark.asyncio
@respx.mock
async def test_cancel_accepts_empty_response():
    respx.delete(f"{BASE_URL}/bookings/bk-1").respond(204)
    assert await make_client().cancel_booking("bk-1") is None


@pytest.mark.asyncio
@respx.mock
async def test_error_status_and_message_are_kept():
    respx.post(f"{BASE_URL}/bookings").respond(409, json={"message": "The slot is no longer available"})

    with pytest.raises(RemoteAuthorityError) as exc_info:
        await make_client().create_temporary_booking(
            "svc-1", "loc-1", datetime(2030, 1, 1, tzinfo=timezone.utc), datetime(2030, 1, 1, 1, tzinfo=timezone.utc)
        )

    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "The slot is no longer available"
    assert exc_info.value.to_dict()["authority"] == "hapio"


@pytest.mark.asyncio
@respx.mock
async def test_validation_errors_are_exposed_per_field():
    respx.patch(f"{BASE_URL}/bookings/bk-1").respond(
        422,
        json={"message": "The given data was invalid.", "errors": {"starts_at": ["No open schedule"]}},
    )

    with pytest.raises(RemoteAuthorityError) as exc_info:
        await make_client().update_booking(
            "bk-1", datetime(2030, 1, 1, tzinfo=timezone.utc), datetime(2030, 1, 1, 1, tzinfo=timezone.utc)
        )

    assert exc_info.value.status_code == 422
    assert exc_info.value.field_errors == {"starts_at": ["No open schedule"]}


@pytest.mark.asyncio
@respx.mock
async def test_non_json_error_body():
    respx.get(f"{BASE_URL}/bookings/bk-1").respond(500, text="Internal Server Error")

    with pytest.raises(RemoteAuthorityError) as exc_info:
        await make_client().get_booking("bk-1")

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Hapio API error (500)"


@pytest.mark.asyncio
@respx.mock
async def test_timeout_is_outcome_unknown():
    respx.patch(f"{BASE_URL}/bookings/bk-1").mock(side_effect=httpx.ReadTimeout("timed out"))

    with pytest.raises(RemoteAuthorityError) as exc_info:
        await make_client(timeout=0.1).confirm_booking("bk-1")

    assert exc_info.value.status_code == 504
    assert exc_info.value.outcome_unknown is True


@pytest.mark.asyncio
@respx.mock
async def test_transport_error_is_502():
    respx.get(f"{BASE_URL}/project").mock(side_effect=httpx.ConnectError("refused"))

    with pytest.raises(RemoteAuthorityError) as exc_info:
        await make_client().get_project()

    assert exc_info.value.status_code == 502
    assert exc_info.value.outcome_unknown is False


@pytest.mark.asyncio
async def test_missing_token_is_configuration_error():
    client = HapioClient(base_url=BASE_URL, api_token="")
    with pytest.raises(ConfigurationError):
        await client.get_project()


@pytest.mark.asyncio
@respx.mock
async def test_concurrent_resource_listing_is_deduplicated():
    route = respx.get(f"{BASE_URL}/resources").respond(200, json={"data": [{"id": "res-1"}]})
    client = make_client()

    results = await asyncio.gather(
        client.list_resources(page=1, per_page=50),
        client.list_resources(per_page=50, page=1),
    )

    assert results[0] == results[1] == [{"id": "res-1"}]
    assert route.call_count == 1
    assert len(client.deduplicator) == 0


@pytest.mark.asyncio
@respx.mock
async def test_get_booking_unwraps_data():
    respx.get(f"{BASE_URL}/bookings/bk-7").respond(
        200, json={"data": {"id": 7, "is_canceled": True, "canceled_at": "2030-01-01T00:00:00Z"}}
    )

    booking = await make_client().get_booking("bk-7")

    assert booking.id == "7"
    assert booking.is_canceled is True
    assert booking.canceled_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
