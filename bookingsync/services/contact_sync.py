import logging
from typing import Any, Optional

import httpx

from ..config import BREVO_API_KEY, BREVO_BASE_URL, BREVO_LIST_ID, EXTERNAL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class ContactSyncClient:
    """
    Pushes booking customers to the Brevo contact list.

    Every call is best-effort: failures are logged and reported through the
    return value, never raised, so a contact-system outage cannot fail a booking.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        list_id: Optional[str] = None,
        timeout: float = EXTERNAL_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key if api_key is not None else BREVO_API_KEY
        self.base_url = (base_url or BREVO_BASE_URL).rstrip("/")
        self.list_id = list_id if list_id is not None else BREVO_LIST_ID
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def upsert_contact(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        attributes: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Create or update a contact; Brevo attribute names are upper-case"""
        if not self.enabled:
            logger.warning("⚠️ BREVO_API_KEY not configured - skipping contact sync")
            return False
        if not email:
            return False

        attrs: dict[str, Any] = {}
        if first_name:
            attrs["FIRSTNAME"] = first_name
        if last_name:
            attrs["LASTNAME"] = last_name
        if phone:
            attrs["SMS"] = phone
        attrs.update(attributes or {})

        body: dict[str, Any] = {"email": email, "attributes": attrs, "updateEnabled": True}
        if self.list_id:
            try:
                body["listIds"] = [int(self.list_id)]
            except ValueError:
                logger.warning(f"⚠️ Ignoring non-numeric BREVO_LIST_ID: {self.list_id}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/contacts",
                    json=body,
                    headers={"api-key": self.api_key, "Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Brevo contact sync failed for {email}: {e}")
            return False

        # 201 created, 204 updated
        if response.status_code in (200, 201, 204):
            logger.info(f"📇 Synced contact {email} to Brevo")
            return True

        logger.warning(f"⚠️ Brevo contact sync rejected for {email}: {response.status_code} {response.text[:200]}")
        return False
