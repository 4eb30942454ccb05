"""
Data model for the SafeRoute risk-annotation pipeline.

Provider payloads (Routes API, Places API, OpenWeatherMap) are parsed into
explicit frozen dataclasses here so the rest of the pipeline never touches
loosely-typed JSON. Parsing is tolerant: any optional field the provider
omits gets a default, and nothing in this module raises on missing data
except Point range validation.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union


# =============================================================================
# GEOMETRY
# =============================================================================

@dataclass(frozen=True)
class Point:
    """A WGS84 coordinate. Immutable value type."""
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"lat out of range [-90,90]: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"lng out of range [-180,180]: {self.lng}")

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


def point_from_lat_lng(lat_lng: Optional[dict]) -> Optional[Point]:
    """Parse a Routes/Places API ``{"latitude": .., "longitude": ..}`` object."""
    if not lat_lng:
        return None
    lat = lat_lng.get("latitude")
    lng = lat_lng.get("longitude")
    if lat is None or lng is None:
        return None
    return Point(float(lat), float(lng))


@dataclass(frozen=True)
class Location:
    """A resolved source or destination."""
    name: str
    coordinates: Point

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "coordinates": self.coordinates.to_dict()}


# =============================================================================
# RAW ROUTES API PAYLOAD
# =============================================================================

@dataclass(frozen=True)
class TransitStop:
    name: str
    location: Optional[Point] = None


@dataclass(frozen=True)
class TransitLine:
    name: str = ""
    short_name: str = ""
    color: str = ""
    text_color: str = ""
    vehicle_name: str = ""
    vehicle_type: str = ""
    vehicle_icon_uri: str = ""
    agencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TransitDetails:
    departure_stop: Optional[TransitStop] = None
    arrival_stop: Optional[TransitStop] = None
    departure_time: str = ""   # RFC 3339, e.g. "2024-05-15T15:30:00Z"
    arrival_time: str = ""
    headsign: str = ""
    headway: str = ""
    num_stops: int = 0
    line: TransitLine = field(default_factory=TransitLine)


@dataclass(frozen=True)
class RawStep:
    travel_mode: str             # "TRANSIT", "WALKING", "DRIVE", ... or "" when absent
    distance_meters: int
    static_duration: str         # "123s"
    polyline: str
    transit_details: Optional[TransitDetails] = None


@dataclass(frozen=True)
class RawLeg:
    steps: Tuple[RawStep, ...] = ()
    start_location: Optional[Point] = None
    end_location: Optional[Point] = None


@dataclass(frozen=True)
class RawRoute:
    distance_meters: int
    duration: str
    polyline: str
    legs: Tuple[RawLeg, ...] = ()
    route_labels: Tuple[str, ...] = ()


def _parse_stop(raw: Optional[dict]) -> Optional[TransitStop]:
    if not raw:
        return None
    location = (raw.get("location") or {}).get("latLng")
    return TransitStop(name=raw.get("name", ""), location=point_from_lat_lng(location))


def parse_transit_details(raw: Optional[dict]) -> Optional[TransitDetails]:
    if not raw:
        return None
    stop_details = raw.get("stopDetails") or {}
    line = raw.get("line") or {}
    vehicle = line.get("vehicle") or {}
    vehicle_name = vehicle.get("name") or {}
    # Routes API v2 wraps vehicle names in a LocalizedText object
    if isinstance(vehicle_name, dict):
        vehicle_name = vehicle_name.get("text", "")
    return TransitDetails(
        departure_stop=_parse_stop(stop_details.get("departureStop")),
        arrival_stop=_parse_stop(stop_details.get("arrivalStop")),
        departure_time=stop_details.get("departureTime", "") or "",
        arrival_time=stop_details.get("arrivalTime", "") or "",
        headsign=raw.get("headsign", "") or "",
        headway=raw.get("headway", "") or "",
        num_stops=int(raw.get("stopCount", raw.get("numStops", 0)) or 0),
        line=TransitLine(
            name=line.get("name", "") or "",
            short_name=line.get("nameShort", line.get("shortName", "")) or "",
            color=line.get("color", "") or "",
            text_color=line.get("textColor", "") or "",
            vehicle_name=vehicle_name or "",
            vehicle_type=vehicle.get("type", "") or "",
            vehicle_icon_uri=vehicle.get("iconUri", "") or "",
            agencies=tuple(a.get("name", "") for a in line.get("agencies") or []),
        ),
    )


def parse_step(raw: dict) -> RawStep:
    return RawStep(
        travel_mode=raw.get("travelMode", "") or "",
        distance_meters=int(raw.get("distanceMeters", 0) or 0),
        static_duration=raw.get("staticDuration", "0s") or "0s",
        polyline=(raw.get("polyline") or {}).get("encodedPolyline", "") or "",
        transit_details=parse_transit_details(raw.get("transitDetails")),
    )


def parse_route(raw: dict) -> RawRoute:
    """Parse one entry of a computeRoutes ``routes`` array."""
    legs = []
    for leg in raw.get("legs") or []:
        legs.append(RawLeg(
            steps=tuple(parse_step(s) for s in leg.get("steps") or []),
            start_location=point_from_lat_lng((leg.get("startLocation") or {}).get("latLng")),
            end_location=point_from_lat_lng((leg.get("endLocation") or {}).get("latLng")),
        ))
    return RawRoute(
        distance_meters=int(raw.get("distanceMeters", 0) or 0),
        duration=raw.get("duration", "0s") or "0s",
        polyline=(raw.get("polyline") or {}).get("encodedPolyline", "") or "",
        legs=tuple(legs),
        route_labels=tuple(raw.get("routeLabels") or ()),
    )


# =============================================================================
# NORMALIZED STEPS
# =============================================================================

@dataclass(frozen=True)
class WalkStep:
    duration: str                # raw seconds, "90s"
    duration_seconds: int
    duration_text: str           # "1 min"
    distance: str                # "492 ft"
    polyline: str                # may be several polylines joined with ";"
    distance_meters: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "WALK",
            "duration": self.duration,
            "durationText": self.duration_text,
            "distance": self.distance,
            "polyline": self.polyline,
        }


@dataclass(frozen=True)
class OtherStep:
    mode: str                    # raw provider tag, e.g. "DRIVE"
    duration: str
    duration_seconds: int
    duration_text: str
    distance: str
    polyline: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.mode,
            "duration": self.duration,
            "durationText": self.duration_text,
            "distance": self.distance,
            "polyline": self.polyline,
        }


@dataclass(frozen=True)
class TransitStep:
    duration: str
    duration_seconds: int
    duration_text: str
    distance: str
    polyline: str
    line: str
    headsign: str
    mode: str                    # lower-cased vehicle type, "bus", "subway", ...
    vehicle: str
    agency: str
    color: str
    text_color: str
    icon_uri: str
    departure_stop: str
    arrival_stop: str
    departure_time: str
    arrival_time: str
    num_stops: int
    departure_coordinates: Optional[Point] = None
    arrival_coordinates: Optional[Point] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "TRANSIT",
            "mode": self.mode,
            "line": self.line,
            "headsign": self.headsign,
            "departureStop": self.departure_stop,
            "arrivalStop": self.arrival_stop,
            "departureTime": self.departure_time,
            "arrivalTime": self.arrival_time,
            "numStops": self.num_stops,
            "agency": self.agency,
            "color": self.color,
            "textColor": self.text_color,
            "vehicle": self.vehicle,
            "iconUri": self.icon_uri,
            "duration": self.duration,
            "durationText": self.duration_text,
            "distance": self.distance,
            "polyline": self.polyline,
            "departureCoordinates": (
                self.departure_coordinates.to_dict() if self.departure_coordinates else None
            ),
            "arrivalCoordinates": (
                self.arrival_coordinates.to_dict() if self.arrival_coordinates else None
            ),
        }


NormalizedStep = Union[TransitStep, WalkStep, OtherStep]


# =============================================================================
# PLACES / WEATHER / IMAGERY
# =============================================================================

WEATHER_ICON_URL = "https://openweathermap.org/img/wn/{icon}@2x.png"
UNKNOWN_STREET = "Unknown Street"

@dataclass(frozen=True)
class PlacePrediction:
    place_id: str
    main_text: str
    secondary_text: str
    full_text: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "placeId": self.place_id,
            "mainText": self.main_text,
            "secondaryText": self.secondary_text,
            "fullText": self.full_text,
        }


@dataclass(frozen=True)
class PlaceDetails:
    name: str
    coordinates: Point
    place_id: str
    formatted_address: str

    def to_location(self) -> Location:
        return Location(name=self.formatted_address or self.name, coordinates=self.coordinates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "coordinates": self.coordinates.to_dict(),
            "placeId": self.place_id,
            "formattedAddress": self.formatted_address,
        }


@dataclass(frozen=True)
class WeatherData:
    """Current conditions at a route's source, metric units."""
    temperature: float
    feels_like: float
    description: str
    main: str                    # OpenWeatherMap group, "Rain", "Clouds", ...
    icon: str
    humidity: float
    wind_speed: float            # m/s
    location: str
    timestamp: int
    condition: str = ""          # bucketed label, see weather.weather_condition

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "feelsLike": self.feels_like,
            "description": self.description,
            "main": self.main,
            "icon": self.icon,
            "iconUrl": WEATHER_ICON_URL.format(icon=self.icon) if self.icon else "",
            "humidity": self.humidity,
            "windSpeed": self.wind_speed,
            "location": self.location,
            "timestamp": self.timestamp,
            "condition": self.condition,
        }


@dataclass(frozen=True)
class StreetViewImage:
    """One Street View sample.

    ``url`` is safe to hand to clients. ``fetch_url`` carries the server
    key and is only used to download the image for scoring; it is never
    serialized.
    """
    url: str
    location: Point
    heading: float
    index: int
    fetch_url: str = field(default="", repr=False)
    street_name: str = UNKNOWN_STREET
    formatted_address: str = ""

    @property
    def image_url(self) -> str:
        return self.fetch_url or self.url

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "coordinates": self.location.to_dict(),
            "heading": self.heading,
            "index": self.index,
            "streetName": self.street_name,
            "formattedAddress": self.formatted_address,
        }


# =============================================================================
# RISK ANALYSIS
# =============================================================================

@dataclass(frozen=True)
class ImageScoreResult:
    risk_score: int              # 0-100, higher is riskier
    explanation: str
    precaution: str


FALLBACK_SCORE = ImageScoreResult(
    risk_score=50,
    explanation="Could not analyze image.",
    precaution="Drive with caution.",
)


@dataclass(frozen=True)
class NotAnalyzed:
    status: str = "not_analyzed"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status}


@dataclass(frozen=True)
class Analyzing:
    partial: Tuple[int, ...] = ()    # scores of the windows finished so far
    status: str = "analyzing"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "riskScores": list(self.partial)}


@dataclass(frozen=True)
class Analyzed:
    scores: Tuple[int, ...]
    explanations: Tuple[str, ...]
    precautions: Tuple[str, ...]
    average: int
    status: str = "analyzed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "riskScores": list(self.scores),
            "explanations": list(self.explanations),
            "precautions": list(self.precautions),
            "averageRiskScore": self.average,
        }


@dataclass(frozen=True)
class Failed:
    reason: str
    status: str = "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "error": self.reason}


RouteAnalysisState = Union[NotAnalyzed, Analyzing, Analyzed, Failed]


# =============================================================================
# ROUTE
# =============================================================================

@dataclass
class Route:
    """A candidate route. Mutable: the analyzer replaces ``analysis`` in place."""
    id: str
    travel_mode: str
    distance_meters: int
    duration: str
    polyline: str
    points: List[Point] = field(default_factory=list)
    steps: List[NormalizedStep] = field(default_factory=list)
    step_segments: List[Dict[str, Any]] = field(default_factory=list)
    route_labels: Tuple[str, ...] = ()
    street_view_images: List[StreetViewImage] = field(default_factory=list)
    weather: Optional[WeatherData] = None
    analysis: RouteAnalysisState = field(default_factory=NotAnalyzed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "travelMode": self.travel_mode,
            "distanceMeters": self.distance_meters,
            "duration": self.duration,
            "polyline": self.polyline,
            "points": [p.to_dict() for p in self.points],
            "steps": [s.to_dict() for s in self.steps],
            "stepSegments": [
                {**seg, "points": [p.to_dict() for p in seg["points"]]}
                for seg in self.step_segments
            ],
            "routeLabels": list(self.route_labels),
            "streetViewImages": [img.to_dict() for img in self.street_view_images],
            "weather": self.weather.to_dict() if self.weather else None,
            "analysis": self.analysis.to_dict(),
        }
