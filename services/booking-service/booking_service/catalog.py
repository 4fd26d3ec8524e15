"""
Lookups against the venue and coach services.

The booking core only needs a handful of fields from each (prices, payees,
coach policy and weekly windows); anything else stays with the owning service.
"""

from typing import Protocol

import httpx

from .config import COACH_SERVICE_URL, HTTP_TIMEOUT, VENUE_SERVICE_URL
from .errors import CatalogUnavailable
from .schemas import CoachInfo, VenueInfo


class Catalog(Protocol):
    async def get_venue(self, venue_id: str) -> VenueInfo | None: ...

    async def get_coach(self, coach_id: str) -> CoachInfo | None: ...

    async def list_venue_ids_for_owner(self, owner_id: str) -> list[str]: ...


class CatalogClient:
    def __init__(
        self,
        venue_service_url: str = VENUE_SERVICE_URL,
        coach_service_url: str = COACH_SERVICE_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.venue_service_url = venue_service_url.rstrip("/")
        self.coach_service_url = coach_service_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _get(self, url: str, params: dict | None = None):
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise CatalogUnavailable(f"Catalog request failed: {e}", details={"url": url}) from e

        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise CatalogUnavailable(
                f"Catalog returned HTTP {r.status_code}",
                details={"url": url, "status": r.status_code},
            )
        return r.json()

    async def get_venue(self, venue_id: str) -> VenueInfo | None:
        data = await self._get(f"{self.venue_service_url}/venues/{venue_id}")
        return VenueInfo.model_validate(data) if data else None

    async def get_coach(self, coach_id: str) -> CoachInfo | None:
        data = await self._get(f"{self.coach_service_url}/coaches/{coach_id}")
        return CoachInfo.model_validate(data) if data else None

    async def list_venue_ids_for_owner(self, owner_id: str) -> list[str]:
        data = await self._get(f"{self.venue_service_url}/venues", params={"owner_id": owner_id})
        return [str(v["id"]) for v in (data or []) if v.get("id")]


catalog = CatalogClient()
