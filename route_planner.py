"""
End-to-end route planning: resolve -> route -> consolidate -> decode ->
imagery -> street names -> weather -> analysis.

Endpoints arrive as one of:
  - {"placeId": "..."}        resolved through Places details
  - {"address": "..."} / str  resolved through geocoding
  - {"lat": .., "lng": ..}    used as-is (optional "name")

Weather is looked up once, at the source, and attached to every route.
Street names for the imagery come from reverse geocoding; a failed lookup
leaves that image labelled "Unknown Street".
Analysis runs last; the returned routes already carry their final
analysis state.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

import httpx

from maps_client import GoogleMapsClient, MapsAPIError, RouteRequestError
from models import Analyzed, Location, Point, RawRoute, Route, WeatherData
from pipeline_config import DEFAULT_CONFIG, PipelineConfig
from polyline_codec import decode
from route_analysis import RouteAnalyzer
from route_trace import timed_stage
from street_view import sample_street_view_images
from transit_steps import consolidate_steps, extract_step_polylines
from weather import get_current_weather

logger = logging.getLogger(__name__)

ALTERNATE_ROUTE_LABEL = "DEFAULT_ROUTE_ALTERNATE"

Endpoint = Union[str, Dict[str, Any]]


@dataclass
class RoutePlan:
    source: Location
    destination: Location
    travel_mode: str
    routes: List[Route] = field(default_factory=list)
    weather: Optional[WeatherData] = None

    @property
    def safest_route_id(self) -> Optional[str]:
        """Id of the analyzed route with the lowest average risk, None if none is analyzed.

        Ties go to the earlier route.
        """
        analyzed = [r for r in self.routes if isinstance(r.analysis, Analyzed)]
        if not analyzed:
            return None
        return min(analyzed, key=lambda r: r.analysis.average).id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.to_dict(),
            "destination": self.destination.to_dict(),
            "travelMode": self.travel_mode,
            "safestRouteId": self.safest_route_id,
            "weather": self.weather.to_dict() if self.weather else None,
            "routes": [r.to_dict() for r in self.routes],
        }


def route_id(raw: RawRoute, index: int) -> str:
    if ALTERNATE_ROUTE_LABEL in raw.route_labels:
        return f"route-alt-{index}"
    return f"route-{index}"


class RoutePlanner:
    def __init__(
        self,
        maps: GoogleMapsClient,
        analyzer: Optional[RouteAnalyzer],
        http: httpx.AsyncClient,
        street_view_key: str,
        weather_key: str = "",
        config: PipelineConfig = DEFAULT_CONFIG,
        street_view_client_key: str = "",
    ):
        self.maps = maps
        self.analyzer = analyzer
        self.http = http
        self.street_view_key = street_view_key
        self.street_view_client_key = street_view_client_key
        self.weather_key = weather_key
        self.config = config

    async def resolve(self, endpoint: Endpoint) -> Location:
        """Turn a request endpoint into a Location.

        Raises:
            RouteRequestError: the endpoint has none of the accepted shapes.
            PlacesLookupError: the place id or address could not be resolved.
        """
        if isinstance(endpoint, str):
            if not endpoint.strip():
                raise RouteRequestError("Empty address")
            return await self.maps.geocode(endpoint)

        if not isinstance(endpoint, dict):
            raise RouteRequestError(f"Unsupported endpoint: {endpoint!r}")

        if endpoint.get("placeId"):
            details = await self.maps.place_details(endpoint["placeId"])
            return details.to_location()
        if endpoint.get("address"):
            return await self.maps.geocode(endpoint["address"])
        if "lat" in endpoint and "lng" in endpoint:
            try:
                point = Point(float(endpoint["lat"]), float(endpoint["lng"]))
            except (TypeError, ValueError) as e:
                raise RouteRequestError(f"Invalid coordinates: {e}") from e
            return Location(name=endpoint.get("name") or f"{point.lat},{point.lng}", coordinates=point)

        raise RouteRequestError("Endpoint needs a placeId, an address, or lat/lng")

    def build_route(self, raw: RawRoute, index: int, travel_mode: str) -> Route:
        """Assemble a display-ready Route from one computeRoutes entry."""
        if not raw.polyline:
            raise MapsAPIError("Invalid route data: missing polyline")
        points = decode(raw.polyline)
        return Route(
            id=route_id(raw, index),
            travel_mode=travel_mode,
            distance_meters=raw.distance_meters,
            duration=raw.duration,
            polyline=raw.polyline,
            points=points,
            steps=consolidate_steps(raw.legs),
            step_segments=extract_step_polylines(raw, travel_mode),
            route_labels=raw.route_labels,
            street_view_images=sample_street_view_images(
                points,
                self.street_view_key,
                self.config.max_street_view_images,
                client_key=self.street_view_client_key,
            ),
        )

    async def label_images(self, routes: List[Route]):
        """Attach street name and address to every Street View sample."""
        targets = [
            (route, i, image)
            for route in routes
            for i, image in enumerate(route.street_view_images)
        ]
        results = await asyncio.gather(
            *(self.maps.reverse_geocode(image.location) for _, _, image in targets),
            return_exceptions=True,
        )
        for (route, i, image), result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Street name lookup failed for %s image %d: %s: %s",
                    route.id, i, type(result).__name__, result,
                )
                continue
            street_name, formatted_address = result
            route.street_view_images[i] = replace(
                image, street_name=street_name, formatted_address=formatted_address
            )

    async def plan(
        self,
        source: Endpoint,
        destination: Endpoint,
        travel_mode: str,
        analyze: bool = True,
    ) -> RoutePlan:
        source_loc, destination_loc = await timed_stage(
            "resolve", asyncio.gather(self.resolve(source), self.resolve(destination))
        )
        logger.info(
            "Computing %s routes from %s to %s", travel_mode, source_loc.name, destination_loc.name
        )

        raw_routes = await timed_stage(
            "routes",
            self.maps.compute_routes(source_loc.coordinates, destination_loc.coordinates, travel_mode),
        )
        routes = [self.build_route(raw, i, travel_mode) for i, raw in enumerate(raw_routes)]
        await timed_stage("street_names", self.label_images(routes))

        weather = await timed_stage(
            "weather",
            get_current_weather(
                self.http, self.weather_key,
                source_loc.coordinates.lat, source_loc.coordinates.lng,
            ),
        )
        for route in routes:
            route.weather = weather

        if analyze and self.analyzer is not None:
            await timed_stage("analysis", self.analyzer.analyze_all(routes))

        plan = RoutePlan(
            source=source_loc,
            destination=destination_loc,
            travel_mode=travel_mode,
            routes=routes,
            weather=weather,
        )
        if plan.safest_route_id:
            logger.info("Safest of %d routes: %s", len(routes), plan.safest_route_id)
        return plan
