"""
Step consolidation for multi-modal routes.

The Routes API returns every leg as a list of fine-grained steps: a transit
itinerary typically alternates many short WALKING steps (one per street
turn) with TRANSIT rides. consolidate_steps() collapses each run of
consecutive walking steps into a single walk step and turns every transit
ride into a display-ready TransitStep, substituting defaults wherever the
provider left metadata out.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from formatting import format_distance, format_duration, format_transit_time, parse_duration_seconds
from models import NormalizedStep, OtherStep, RawLeg, RawRoute, RawStep, TransitStep, WalkStep
from polyline_codec import decode

logger = logging.getLogger(__name__)

TRANSIT_MODE = "TRANSIT"
WALKING_MODES = ("WALKING", "WALK")

DEFAULT_LINE_COLOR = "#1A73E8"
DEFAULT_LINE_TEXT_COLOR = "#FFFFFF"
DEFAULT_DEPARTURE_STOP = "Departure Stop"
DEFAULT_ARRIVAL_STOP = "Arrival Stop"
POLYLINE_SEPARATOR = ";"


class _WalkAccumulator:
    """Running totals for a run of consecutive walking steps."""

    def __init__(self, step: RawStep):
        self.distance_meters = step.distance_meters
        self.duration_seconds = parse_duration_seconds(step.static_duration)
        self.polyline = step.polyline

    def add(self, step: RawStep):
        self.distance_meters += step.distance_meters
        self.duration_seconds += parse_duration_seconds(step.static_duration)
        if step.polyline and self.polyline:
            self.polyline = f"{self.polyline}{POLYLINE_SEPARATOR}{step.polyline}"

    def to_step(self) -> WalkStep:
        return WalkStep(
            duration=f"{self.duration_seconds}s",
            duration_seconds=self.duration_seconds,
            duration_text=format_duration(self.duration_seconds),
            distance=format_distance(self.distance_meters),
            polyline=self.polyline,
            distance_meters=self.distance_meters,
        )


def build_transit_step(step: RawStep) -> TransitStep:
    """Build a TransitStep, defaulting any missing line or stop metadata."""
    details = step.transit_details
    line = details.line
    departure = details.departure_stop
    arrival = details.arrival_stop
    has_stops = departure is not None and arrival is not None
    seconds = parse_duration_seconds(step.static_duration)

    return TransitStep(
        duration=step.static_duration,
        duration_seconds=seconds,
        duration_text=format_duration(seconds),
        distance=format_distance(step.distance_meters),
        polyline=step.polyline,
        line=line.short_name or line.name or "",
        headsign=details.headsign,
        mode=line.vehicle_type.lower() if line.vehicle_type else "transit",
        vehicle=line.vehicle_name or "Transit",
        agency=line.agencies[0] if line.agencies else "",
        color=line.color or DEFAULT_LINE_COLOR,
        text_color=line.text_color or DEFAULT_LINE_TEXT_COLOR,
        icon_uri=line.vehicle_icon_uri,
        departure_stop=departure.name if has_stops else DEFAULT_DEPARTURE_STOP,
        arrival_stop=arrival.name if has_stops else DEFAULT_ARRIVAL_STOP,
        departure_time=format_transit_time(details.departure_time) if has_stops else "",
        arrival_time=format_transit_time(details.arrival_time) if has_stops else "",
        num_stops=details.num_stops,
        departure_coordinates=departure.location if departure is not None else None,
        arrival_coordinates=arrival.location if arrival is not None else None,
    )


def _build_other_step(step: RawStep) -> OtherStep:
    seconds = parse_duration_seconds(step.static_duration)
    return OtherStep(
        mode=step.travel_mode,
        duration=step.static_duration,
        duration_seconds=seconds,
        duration_text=format_duration(seconds),
        distance=format_distance(step.distance_meters),
        polyline=step.polyline,
    )


def consolidate_steps(legs: Iterable[RawLeg]) -> List[NormalizedStep]:
    """Normalize the steps of all legs into a display-ready sequence.

    Single pass, at most one open walk accumulator. Consecutive walking
    steps merge; transit rides are never merged with anything. Steps with
    no travel mode tag are dropped, so the output is never longer than the
    input.
    """
    out: List[NormalizedStep] = []
    walk: Optional[_WalkAccumulator] = None

    for leg in legs:
        for step in leg.steps:
            if step.travel_mode == TRANSIT_MODE and step.transit_details is not None:
                if walk is not None:
                    out.append(walk.to_step())
                    walk = None
                out.append(build_transit_step(step))
            elif step.travel_mode in WALKING_MODES:
                if walk is None:
                    walk = _WalkAccumulator(step)
                else:
                    walk.add(step)
            elif step.travel_mode:
                if walk is not None:
                    out.append(walk.to_step())
                    walk = None
                out.append(_build_other_step(step))
            else:
                logger.debug("Skipping step with no travel mode (%dm)", step.distance_meters)

    if walk is not None:
        out.append(walk.to_step())
    return out


def extract_step_polylines(route: RawRoute, default_mode: str) -> List[Dict[str, Any]]:
    """Per-step render segments so each travel mode can be drawn distinctly."""
    segments = []
    for leg in route.legs:
        for step in leg.steps:
            if not step.polyline:
                continue
            mode = step.travel_mode or default_mode
            segments.append({
                "points": decode(step.polyline),
                "travelMode": "WALKING" if mode in WALKING_MODES else mode,
                "distanceMeters": step.distance_meters,
                "duration": step.static_duration,
            })
    return segments
