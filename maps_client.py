"""
Async client for the Google Maps Platform APIs SafeRoute depends on.

  - Routes API v2 ``directions/v2:computeRoutes`` for candidate routes
  - Places API v1 ``places:autocomplete`` and ``places/{id}`` for
    location search
  - Geocoding API for free-text addresses and street names at
    Street View sample points

Location lookups (autocomplete, place details, geocode) go through a
LookupCache, so a repeated query inside the TTL makes no request, and a
failed refresh serves the previous answer when there is one.

Every outbound call is recorded on the current trace.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx

from lookup_cache import LookupCache
from models import (
    UNKNOWN_STREET,
    Location,
    PlaceDetails,
    PlacePrediction,
    Point,
    RawRoute,
    parse_route,
    point_from_lat_lng,
)
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from polyline_codec import haversine_m
from route_trace import get_trace

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class MapsAPIError(Exception):
    """A Google Maps Platform call returned an error or unusable payload."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class PlacesLookupError(MapsAPIError):
    """Autocomplete, place details or geocoding failed."""


class RouteRequestError(ValueError):
    """The route request itself is invalid (unknown mode, too far to walk)."""


# =============================================================================
# CONSTANTS
# =============================================================================

ROUTES_URL = "https://routes.googleapis.com/directions/v2:computeRoutes"
PLACES_URL = "https://places.googleapis.com/v1"
GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"

DRIVE = "DRIVE"
WALK = "WALK"
BICYCLE = "BICYCLE"
TRANSIT = "TRANSIT"
TWO_WHEELER = "TWO_WHEELER"
TRAVEL_MODES = (DRIVE, WALK, BICYCLE, TRANSIT, TWO_WHEELER)

ROUTES_FIELD_MASK = ",".join([
    "routes.legs.steps.polyline",
    "routes.legs.steps.distanceMeters",
    "routes.legs.steps.staticDuration",
    "routes.legs.steps.travelMode",
    "routes.polyline",
    "routes.distanceMeters",
    "routes.duration",
    "routes.routeLabels",
])
TRANSIT_FIELD_MASK = ROUTES_FIELD_MASK + ",routes.legs.steps.transitDetails,routes.legs.stepsOverview"

TRANSIT_ALLOWED_MODES = ["BUS", "SUBWAY", "TRAIN", "LIGHT_RAIL", "RAIL"]

PLACE_DETAILS_FIELD_MASK = "displayName,formattedAddress,location"
AUTOCOMPLETE_MIN_CHARS = 2

# Default autocomplete location bias: San Francisco, 10 km.
DEFAULT_BIAS_CENTER = Point(37.7749, -122.4194)
DEFAULT_BIAS_RADIUS_M = 10000.0


def has_transit_details(routes: List[RawRoute]) -> bool:
    return any(
        step.transit_details is not None
        for route in routes
        for leg in route.legs
        for step in leg.steps
        if step.travel_mode == TRANSIT
    )


def build_route_request(source: Point, destination: Point, travel_mode: str) -> Dict[str, Any]:
    """computeRoutes request body with the per-mode routing options."""
    body: Dict[str, Any] = {
        "origin": {"location": {"latLng": {"latitude": source.lat, "longitude": source.lng}}},
        "destination": {
            "location": {"latLng": {"latitude": destination.lat, "longitude": destination.lng}}
        },
        "travelMode": travel_mode,
        "computeAlternativeRoutes": True,
        "languageCode": "en-US",
        "units": "IMPERIAL",
    }
    if travel_mode in (DRIVE, TWO_WHEELER):
        body["routingPreference"] = "TRAFFIC_AWARE"
        body["routeModifiers"] = {
            "avoidHighways": travel_mode == TWO_WHEELER,
            "avoidTolls": travel_mode == TWO_WHEELER,
        }
    elif travel_mode == BICYCLE:
        body["routeModifiers"] = {"avoidHighways": True}
    elif travel_mode == TRANSIT:
        body["transitPreferences"] = {
            "routingPreference": "LESS_WALKING",
            "allowedTravelModes": list(TRANSIT_ALLOWED_MODES),
        }
    return body


# =============================================================================
# CLIENT
# =============================================================================

class GoogleMapsClient:
    """Client for Google Maps APIs"""

    def __init__(
        self,
        api_key: str,
        http: httpx.AsyncClient,
        cache: Optional[LookupCache] = None,
        config: PipelineConfig = DEFAULT_CONFIG,
    ):
        self.api_key = api_key
        self.http = http
        self.config = config
        self.cache = cache if cache is not None else LookupCache(
            ttl_seconds=config.cache_ttl_seconds,
            timeout_seconds=config.lookup_timeout_seconds,
        )

    async def _traced_request(
        self,
        service: str,
        endpoint_name: str,
        method: str,
        url: str,
        error_cls=MapsAPIError,
        **kwargs,
    ) -> dict:
        """HTTP request with trace recording. Raises ``error_cls`` on HTTP errors."""
        t0 = time.time()
        response = await self.http.request(method, url, **kwargs)
        elapsed_ms = int((time.time() - t0) * 1000)
        try:
            data = response.json()
        except ValueError:
            data = {}
        provider_status = data.get("status", "") if isinstance(data, dict) else ""
        trace = get_trace()
        if trace:
            trace.record_api_call(
                service=service,
                endpoint=endpoint_name,
                elapsed_ms=elapsed_ms,
                status_code=response.status_code,
                provider_status=str(provider_status),
            )
        if response.is_error:
            logger.warning(
                "%s %s returned HTTP %d: %s",
                service, endpoint_name, response.status_code, response.text[:200],
            )
            raise error_cls(
                f"{endpoint_name} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(data, dict):
            raise error_cls(f"{endpoint_name} returned a non-object payload", response.status_code)
        return data

    # ------------------------------------------------------------------
    # Places
    # ------------------------------------------------------------------

    async def autocomplete(
        self,
        text: str,
        bias_center: Point = DEFAULT_BIAS_CENTER,
        bias_radius_m: float = DEFAULT_BIAS_RADIUS_M,
    ) -> List[PlacePrediction]:
        """Place predictions for partially typed input. Short input returns []."""
        if not text or len(text.strip()) < AUTOCOMPLETE_MIN_CHARS:
            return []

        async def fetch() -> List[PlacePrediction]:
            data = await self._traced_request(
                "google_places", "autocomplete", "POST",
                f"{PLACES_URL}/places:autocomplete",
                error_cls=PlacesLookupError,
                headers={"X-Goog-Api-Key": self.api_key},
                json={
                    "input": text,
                    "locationBias": {
                        "circle": {
                            "center": {"latitude": bias_center.lat, "longitude": bias_center.lng},
                            "radius": bias_radius_m,
                        }
                    },
                },
            )
            predictions = []
            for suggestion in data.get("suggestions") or []:
                prediction = suggestion.get("placePrediction")
                if not prediction:
                    continue
                structured = prediction.get("structuredFormat") or {}
                predictions.append(PlacePrediction(
                    place_id=prediction.get("placeId", ""),
                    main_text=(structured.get("mainText") or {}).get("text", ""),
                    secondary_text=(structured.get("secondaryText") or {}).get("text", ""),
                    full_text=(prediction.get("text") or {}).get("text", ""),
                ))
            return predictions

        return await self.cache.get_or_fetch(f"autocomplete:{text.strip()}", fetch)

    async def place_details(self, place_id: str) -> PlaceDetails:
        """Name, address and coordinates for a place id."""

        async def fetch() -> PlaceDetails:
            data = await self._traced_request(
                "google_places", "place_details", "GET",
                f"{PLACES_URL}/places/{place_id}",
                error_cls=PlacesLookupError,
                headers={
                    "X-Goog-Api-Key": self.api_key,
                    "X-Goog-FieldMask": PLACE_DETAILS_FIELD_MASK,
                },
            )
            coordinates = point_from_lat_lng(data.get("location"))
            if coordinates is None:
                raise PlacesLookupError(f"Place {place_id} has no location")
            return PlaceDetails(
                name=(data.get("displayName") or {}).get("text", ""),
                coordinates=coordinates,
                place_id=place_id,
                formatted_address=data.get("formattedAddress", ""),
            )

        # Place ids are case-sensitive.
        return await self.cache.get_or_fetch(f"placedetails:{place_id}", fetch, normalize=False)

    async def geocode(self, address: str) -> Location:
        """Convert a free-text address to a Location."""

        async def fetch() -> Location:
            data = await self._traced_request(
                "google_maps", "geocode", "GET", GEOCODE_URL,
                error_cls=PlacesLookupError,
                params={"address": address, "key": self.api_key},
            )
            if data.get("status") != "OK" or not data.get("results"):
                raise PlacesLookupError(f"Geocoding failed: {data.get('status')}")
            result = data["results"][0]
            location = (result.get("geometry") or {}).get("location") or {}
            try:
                coordinates = Point(float(location["lat"]), float(location["lng"]))
            except (KeyError, TypeError, ValueError) as e:
                raise PlacesLookupError("Geocoding returned no location") from e
            return Location(
                name=result.get("formatted_address") or address,
                coordinates=coordinates,
            )

        return await self.cache.get_or_fetch(f"geocode:{address.strip()}", fetch)

    async def reverse_geocode(self, point: Point) -> Tuple[str, str]:
        """(street name, formatted address) for a coordinate.

        The street name is the first "route" address component, or
        "Unknown Street" when the result has none.
        """

        async def fetch() -> Tuple[str, str]:
            data = await self._traced_request(
                "google_maps", "reverse_geocode", "GET", GEOCODE_URL,
                error_cls=PlacesLookupError,
                params={"latlng": f"{point.lat},{point.lng}", "key": self.api_key},
            )
            if data.get("status") != "OK" or not data.get("results"):
                raise PlacesLookupError(f"Reverse geocoding failed: {data.get('status')}")
            result = data["results"][0]
            street_name = UNKNOWN_STREET
            for component in result.get("address_components") or []:
                if "route" in (component.get("types") or []) and component.get("long_name"):
                    street_name = component["long_name"]
                    break
            return street_name, result.get("formatted_address", "")

        return await self.cache.get_or_fetch(f"revgeocode:{point.lat:.5f},{point.lng:.5f}", fetch)

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------

    async def _compute(self, body: Dict[str, Any], field_mask: str) -> List[RawRoute]:
        data = await self._traced_request(
            "google_routes", "computeRoutes", "POST", ROUTES_URL,
            headers={
                "X-Goog-Api-Key": self.api_key,
                "X-Goog-FieldMask": field_mask,
            },
            json=body,
            timeout=self.config.http_timeout_seconds,
        )
        return [parse_route(r) for r in data.get("routes") or []]

    async def compute_routes(
        self,
        source: Point,
        destination: Point,
        travel_mode: str = DRIVE,
    ) -> List[RawRoute]:
        """Candidate routes between two points, alternatives included.

        Raises:
            RouteRequestError: unknown travel mode, or a walk/bicycle trip
                longer than the configured limit.
            MapsAPIError: the Routes API failed or returned no routes.
        """
        if travel_mode not in TRAVEL_MODES:
            raise RouteRequestError(f"Unsupported travel mode: {travel_mode}")

        if travel_mode in (WALK, BICYCLE):
            distance_m = haversine_m(source, destination)
            if distance_m > self.config.max_walk_bike_km * 1000:
                raise RouteRequestError(
                    f"Distance of {round(distance_m / 1000)} km is too far for {travel_mode} mode"
                )

        body = build_route_request(source, destination, travel_mode)
        field_mask = TRANSIT_FIELD_MASK if travel_mode == TRANSIT else ROUTES_FIELD_MASK
        routes = await self._compute(body, field_mask)

        if travel_mode == TRANSIT and routes and not has_transit_details(routes):
            logger.info("No transit details in response, retrying with FEWER_TRANSFERS")
            body["transitPreferences"] = {"routingPreference": "FEWER_TRANSFERS"}
            try:
                retried = await self._compute(body, field_mask)
            except (MapsAPIError, httpx.HTTPError):
                logger.warning("Transit retry failed, keeping first response", exc_info=True)
            else:
                if retried:
                    routes = retried

        if not routes:
            raise MapsAPIError("No routes returned from API")
        return routes
