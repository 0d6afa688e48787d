"""Walking and biking ETAs to every dining hall via the Google Distance Matrix API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence

import requests

from .errors import MatrixError, MissingApiKey
from .models import Coordinate, EtaResult, HallLocation

logger = logging.getLogger(__name__)

GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"

DINING_HALL_LOCATIONS: tuple[HallLocation, ...] = (
    HallLocation(name="Arrillaga Family Dining Commons", lat=37.4254899164213, lon=-122.164203213491),
    HallLocation(name="Branner Dining", lat=37.4258450648514, lon=-122.1627032657454),
    HallLocation(name="Florence Moore Dining", lat=37.42226212615886, lon=-122.17179705029382),
    HallLocation(name="Lakeside Dining", lat=37.42467330589694, lon=-122.17633688795281),
    HallLocation(name="Ricker Dining", lat=37.425480437342756, lon=-122.18052942714579),
    HallLocation(name="Stern Dining", lat=37.424536020889356, lon=-122.1656459941451),
    HallLocation(name="Wilbur Dining", lat=37.42401672059748, lon=-122.16311743032858),
)

WALKING = "walking"
BICYCLING = "bicycling"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _element_ok(element: Mapping[str, Any]) -> bool:
    return element.get("status") == "OK"


def to_minutes(element: Mapping[str, Any]) -> Optional[float]:
    if not _element_ok(element):
        return None
    value = (element.get("duration") or {}).get("value")
    if not _is_number(value):
        return None
    return round(value / 60, 1)


def to_kilometers(element: Mapping[str, Any]) -> Optional[float]:
    if not _element_ok(element):
        return None
    value = (element.get("distance") or {}).get("value")
    if not _is_number(value):
        return None
    return round(value / 1000, 2)


class DistanceMatrixProxy:
    """
    Fans a user origin out to the fixed hall list for two travel modes.

    Google guarantees ``rows[0].elements[i]`` answers ``destinations[i]``, so both legs
    are merged back onto the hall list by position.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        halls: Sequence[HallLocation] = DINING_HALL_LOCATIONS,
        base_url: str = GOOGLE_DISTANCE_MATRIX_URL,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.halls = tuple(halls)
        self.base_url = base_url
        self.timeout = timeout
        self._http = session or requests

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def compute_etas(self, origin: Coordinate) -> List[EtaResult]:
        if not self.api_key:
            raise MissingApiKey("missing_api_key")

        walk_result, bike_result = await asyncio.gather(
            asyncio.to_thread(self.fetch_elements, origin, WALKING),
            asyncio.to_thread(self.fetch_elements, origin, BICYCLING),
            return_exceptions=True,
        )
        for result in (walk_result, bike_result):
            if isinstance(result, BaseException):
                raise result

        return self.merge(walk_result, bike_result)

    def fetch_elements(self, origin: Coordinate, mode: str) -> List[Mapping[str, Any]]:
        params = {
            "origins": f"{origin.lat},{origin.lon}",
            "destinations": "|".join(hall.as_destination() for hall in self.halls),
            "mode": mode,
            "key": self.api_key,
        }
        try:
            response = self._http.get(self.base_url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("Distance matrix %s request failed: %s", mode, exc)
            raise MatrixError("matrix_request_failed") from exc
        if not 200 <= response.status_code < 300:
            logger.warning("Distance matrix %s request failed with HTTP %s", mode, response.status_code)
            raise MatrixError(f"matrix_http_{response.status_code}", status=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise MatrixError("matrix_invalid_response", status=response.status_code) from exc

        if not isinstance(data, dict) or data.get("status") != "OK":
            raise MatrixError("matrix_invalid_response", status=response.status_code)
        rows = data.get("rows")
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            raise MatrixError("matrix_invalid_response", status=response.status_code)
        elements = rows[0].get("elements") or []
        if not isinstance(elements, list):
            raise MatrixError("matrix_invalid_response", status=response.status_code)
        return [element if isinstance(element, dict) else {} for element in elements]

    def merge(
        self,
        walk_elements: Sequence[Mapping[str, Any]],
        bike_elements: Sequence[Mapping[str, Any]],
    ) -> List[EtaResult]:
        results: List[EtaResult] = []
        for index, hall in enumerate(self.halls):
            walk = walk_elements[index] if index < len(walk_elements) else {}
            bike = bike_elements[index] if index < len(bike_elements) else {}
            distance = to_kilometers(walk)
            if distance is None:
                distance = to_kilometers(bike)
            results.append(
                EtaResult(
                    hall=hall.name,
                    distance_km=distance,
                    walk_min=to_minutes(walk),
                    bike_min=to_minutes(bike),
                )
            )
        return results
