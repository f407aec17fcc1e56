"""Reverse geocoding of capture coordinates to a country name."""

import logging
from typing import Optional

import httpx

from memorygrove.common.resilience import retry_geocoding_call

logger = logging.getLogger(__name__)


class GeocodingError(Exception):
    pass


class ReverseGeocoder:
    """
    Looks up the country for a coordinate pair with a Nominatim-compatible
    reverse geocoding endpoint.
    """

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org/reverse",
        user_agent: str = "MemoryGrove/1.0",
        timeout: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url
        self.user_agent = user_agent
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    @retry_geocoding_call
    def _reverse(self, latitude: float, longitude: float) -> dict:
        response = self._get_client().get(
            self.base_url,
            params={
                "format": "json",
                "lat": latitude,
                "lon": longitude,
                "zoom": 18,
                "addressdetails": 1,
            },
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise GeocodingError(f"Unexpected geocoding response: {data!r}")
        return data

    def country_for(self, latitude: float, longitude: float) -> Optional[str]:
        """Country name for the coordinates, or None if it cannot be found."""
        try:
            data = self._reverse(latitude, longitude)
        except (httpx.HTTPError, ValueError, GeocodingError) as e:
            logger.warning(
                f"Reverse geocoding failed for ({latitude}, {longitude}): {e}")
            return None
        return (data.get("address") or {}).get("country")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
