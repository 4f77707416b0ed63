"""Resolves a catalog service reference to its Hapio mapping, price and duration"""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from ..config import (
    DEFAULT_DURATION_MINUTES,
    HAPIO_DEFAULT_LOCATION_ID,
    HAPIO_DEFAULT_RESOURCE_ID,
    HAPIO_SERVICE_MAP_PATH,
)
from ..errors import InvalidRequest
from ..models import Service

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"^REPLACE_WITH", re.IGNORECASE)


def clean_id(value) -> Optional[str]:
    """Blank and REPLACE_WITH... placeholder ids count as missing"""
    if value is None:
        return None
    value = str(value).strip()
    if not value or _PLACEHOLDER.match(value):
        return None
    return value


@dataclass
class ResolvedService:
    slug: str
    remote_service_id: str
    location_id: str
    resource_id: Optional[str] = None
    name: Optional[str] = None
    local_id: Optional[int] = None
    price_cents: Optional[int] = None
    duration_minutes: int = DEFAULT_DURATION_MINUTES


class ServiceCatalog:
    """
    Database first, then the static JSON map.

    The map file looks like:
        {"defaultLocationId": "...", "defaultResourceId": "...",
         "services": {"<slug>": {"serviceId": "...", "locationId": "...",
                                 "resourceId": "...", "durationMinutes": 60,
                                 "price": 120.0}}}
    """

    def __init__(self, db: Session, service_map: Optional[dict] = None):
        self.db = db
        self._service_map = service_map

    @property
    def service_map(self) -> dict:
        if self._service_map is None:
            self._service_map = load_service_map(HAPIO_SERVICE_MAP_PATH)
        return self._service_map

    def _find_local(self, ref: str) -> Optional[Service]:
        query = self.db.query(Service)
        if ref.isdigit():
            service = query.filter(Service.id == int(ref)).first()
            if service:
                return service
        return query.filter(Service.slug == ref).first()

    def resolve(self, ref: str) -> ResolvedService:
        """Raise InvalidRequest when the service cannot be mapped to Hapio"""
        ref = (ref or "").strip()
        if not ref:
            raise InvalidRequest("Service is required")

        local = self._find_local(ref)
        slug = local.slug if local else ref
        entry = (self.service_map.get("services") or {}).get(slug) or {}

        remote_service_id = clean_id(local.hapio_service_id if local else None) or clean_id(
            entry.get("serviceId")
        )
        location_id = (
            clean_id(local.hapio_location_id if local else None)
            or clean_id(entry.get("locationId"))
            or clean_id(self.service_map.get("defaultLocationId"))
            or clean_id(HAPIO_DEFAULT_LOCATION_ID)
        )
        resource_id = (
            clean_id(local.hapio_resource_id if local else None)
            or clean_id(entry.get("resourceId"))
            or clean_id(self.service_map.get("defaultResourceId"))
            or clean_id(HAPIO_DEFAULT_RESOURCE_ID)
        )

        if not remote_service_id:
            logger.warning(f"⚠️ No Hapio mapping for service '{ref}'")
            raise InvalidRequest(f"Service '{ref}' is not configured for booking")
        if not location_id:
            logger.warning(f"⚠️ No Hapio location for service '{ref}' and no default configured")
            raise InvalidRequest(f"Service '{ref}' has no booking location configured")

        price = local.price if local and local.price is not None else entry.get("price")
        duration = (local.duration_minutes if local else None) or entry.get("durationMinutes")

        return ResolvedService(
            slug=slug,
            remote_service_id=remote_service_id,
            location_id=location_id,
            resource_id=resource_id,
            name=(local.name if local else None) or entry.get("name") or slug,
            local_id=local.id if local else None,
            price_cents=dollars_to_cents(price) if price is not None else None,
            duration_minutes=int(duration or DEFAULT_DURATION_MINUTES),
        )

    def duration_for(self, ref: Optional[str]) -> int:
        """Duration in minutes, default when the service is unknown"""
        if not ref:
            return DEFAULT_DURATION_MINUTES
        local = self._find_local(ref)
        if local and local.duration_minutes:
            return int(local.duration_minutes)
        entry = (self.service_map.get("services") or {}).get(ref) or {}
        return int(entry.get("durationMinutes") or DEFAULT_DURATION_MINUTES)


def dollars_to_cents(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1")))


def load_service_map(path: Optional[str]) -> dict:
    if not path:
        return {}
    map_path = Path(path)
    if not map_path.exists():
        logger.info(f"No Hapio service map at {map_path}; relying on the services table")
        return {}
    try:
        with open(map_path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"❌ Failed to load Hapio service map {map_path}: {e}")
        return {}
