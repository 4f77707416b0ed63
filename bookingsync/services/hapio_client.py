import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import httpx

from ..config import EXTERNAL_TIMEOUT_SECONDS, HAPIO_API_TOKEN, HAPIO_BASE_URL
from ..dedup import RequestDeduplicator, cache_key, default_deduplicator
from ..errors import ConfigurationError, RemoteAuthorityError
from ..utils.timeutils import format_for_hapio, parse_iso

logger = logging.getLogger(__name__)


@dataclass
class HapioBooking:
    """Normalized Hapio booking (the API wraps it in ``data``)"""

    id: str
    service_id: Optional[str] = None
    location_id: Optional[str] = None
    resource_id: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    is_temporary: bool = False
    is_canceled: bool = False
    finalized_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> "HapioBooking":
        data = payload.get("data", payload) if isinstance(payload, dict) else {}
        data = data or {}
        return cls(
            id=str(data.get("id")) if data.get("id") is not None else "",
            service_id=data.get("service_id"),
            location_id=data.get("location_id"),
            resource_id=data.get("resource_id"),
            starts_at=parse_iso(data.get("starts_at")),
            ends_at=parse_iso(data.get("ends_at")),
            is_temporary=bool(data.get("is_temporary")),
            is_canceled=bool(data.get("is_canceled")),
            finalized_at=parse_iso(data.get("finalized_at")),
            canceled_at=parse_iso(data.get("canceled_at")),
            metadata=data.get("metadata") or {},
        )


class HapioClient:
    """Client for the Hapio scheduling API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = EXTERNAL_TIMEOUT_SECONDS,
        deduplicator: Optional[RequestDeduplicator] = None,
    ):
        self.base_url = (base_url or HAPIO_BASE_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else HAPIO_API_TOKEN
        self.timeout = timeout
        self.deduplicator = deduplicator or default_deduplicator

    def _headers(self) -> dict[str, str]:
        if not self.api_token:
            logger.error("HAPIO_API_TOKEN not configured in environment variables")
            raise ConfigurationError("Hapio API token not configured")
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self._headers()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"⏱️ Hapio {method} {path} timed out after {self.timeout}s")
            raise RemoteAuthorityError(
                f"Hapio request timed out ({method} {path})",
                status_code=504,
                outcome_unknown=True,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"❌ Hapio {method} {path} transport error: {e}")
            raise RemoteAuthorityError(f"Hapio request failed: {e}", status_code=502) from e

        if response.status_code >= 400:
            raise self._error_from_response(method, path, response)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(method: str, path: str, response: httpx.Response) -> RemoteAuthorityError:
        try:
            body = response.json()
        except ValueError:
            body = response.text

        message = None
        field_errors = None
        if isinstance(body, dict):
            message = body.get("message")
            if response.status_code == 422 and isinstance(body.get("errors"), dict):
                field_errors = body["errors"]

        message = message or f"Hapio API error ({response.status_code})"
        logger.error(f"❌ Hapio {method} {path} failed: {response.status_code} {message}")
        return RemoteAuthorityError(
            message,
            status_code=response.status_code,
            body=body,
            field_errors=field_errors,
        )

    async def _read(self, path: str, params: Optional[dict] = None) -> Any:
        key = cache_key(f"GET {path}", params)
        return await self.deduplicator.run(key, lambda: self._request("GET", path, params=params))

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    async def create_temporary_booking(
        self,
        service_id: str,
        location_id: str,
        starts_at: datetime,
        ends_at: datetime,
        resource_id: Optional[str] = None,
        metadata: Optional[dict] = None,
        tz_name: Optional[str] = None,
    ) -> HapioBooking:
        """Place a temporary hold on a slot"""
        body: dict[str, Any] = {
            "location_id": location_id,
            "service_id": service_id,
            "starts_at": format_for_hapio(starts_at, tz_name),
            "ends_at": format_for_hapio(ends_at, tz_name),
            "is_temporary": True,
        }
        if resource_id:
            body["resource_id"] = resource_id
        if metadata:
            body["metadata"] = metadata

        logger.info(f"🔒 Creating temporary Hapio booking for service {service_id} at {body['starts_at']}")
        booking = HapioBooking.from_payload(await self._request("POST", "bookings", json=body))
        if not booking.id:
            raise RemoteAuthorityError("Hapio returned a booking without an id", status_code=502)
        return booking

    async def confirm_booking(self, booking_id: str, metadata: Optional[dict] = None) -> HapioBooking:
        """Convert a temporary hold into a permanent booking"""
        body: dict[str, Any] = {"is_temporary": False}
        if metadata:
            body["metadata"] = metadata
        logger.info(f"✅ Confirming Hapio booking {booking_id}")
        return HapioBooking.from_payload(await self._request("PATCH", f"bookings/{booking_id}", json=body))

    async def update_booking(
        self,
        booking_id: str,
        starts_at: datetime,
        ends_at: datetime,
        ignore_schedule: bool = False,
        metadata: Optional[dict] = None,
        tz_name: Optional[str] = None,
    ) -> HapioBooking:
        body: dict[str, Any] = {
            "starts_at": format_for_hapio(starts_at, tz_name),
            "ends_at": format_for_hapio(ends_at, tz_name),
            "ignore_schedule": ignore_schedule,
        }
        if metadata:
            body["metadata"] = metadata
        logger.info(f"🔄 Moving Hapio booking {booking_id} to {body['starts_at']}")
        return HapioBooking.from_payload(await self._request("PATCH", f"bookings/{booking_id}", json=body))

    async def cancel_booking(self, booking_id: str) -> None:
        logger.info(f"🗑️ Cancelling Hapio booking {booking_id}")
        await self._request("DELETE", f"bookings/{booking_id}")

    async def get_booking(self, booking_id: str) -> HapioBooking:
        return HapioBooking.from_payload(await self._read(f"bookings/{booking_id}"))

    # ------------------------------------------------------------------
    # Project / resources (read-only, deduplicated)
    # ------------------------------------------------------------------

    async def get_project(self) -> dict:
        payload = await self._read("project")
        return (payload or {}).get("data", payload or {})

    async def list_resources(self, page: Optional[int] = None, per_page: Optional[int] = None) -> list[dict]:
        params = {"page": page, "per_page": per_page}
        params = {k: v for k, v in params.items() if v is not None} or None
        payload = await self._read("resources", params)
        return (payload or {}).get("data", [])
