from __future__ import annotations

import logging
from typing import Any

import httpx

from ttpwatch.domain import ApiError, Location, SlotAvailability

logger = logging.getLogger(__name__)

BASE_URL = "https://ttp.cbp.dhs.gov/schedulerapi"
SERVICE_NAME = "Global Entry"


class TtpClient:
    """Async client for the TTP scheduler API.

    Every failure (transport, status, decoding) surfaces as ApiError.
    """

    def __init__(
        self,
        *,
        base_url: str = BASE_URL,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    async def __aenter__(self) -> TtpClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}/{path}"
        try:
            r = await self._http.get(url, params=params)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.debug("GET %s -> HTTP %d, body: %.200s", url, e.response.status_code, e.response.text)
            raise ApiError(f"{url} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.debug("GET %s failed", url, exc_info=True)
            # str() of a timeout is often empty, keep the type name visible
            raise ApiError(f"Request to {url} failed ({type(e).__name__}: {e})") from e

        try:
            return r.json()
        except ValueError as e:
            logger.debug("GET %s returned non-JSON body: %.200s", url, r.text)
            raise ApiError(f"Invalid JSON from {url}: {e}") from e

    async def get_all_open_locations(self) -> list[Location]:
        """All operational, non-temporary, non-invite-only Global Entry locations."""
        data = await self._get_json(
            "locations/",
            {
                "temporary": "false",
                "inviteOnly": "false",
                "operational": "true",
                "serviceName": SERVICE_NAME,
            },
        )
        try:
            return [Location.from_json(item) for item in data]
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Malformed locations payload: {e!r}") from e

    async def get_slot_availability(self, location: Location) -> SlotAvailability:
        data = await self._get_json("slot-availability", {"locationId": location.id})
        try:
            return SlotAvailability.from_json(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Malformed slot availability for {location}: {e!r}") from e
