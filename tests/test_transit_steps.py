"""Unit tests for transit_steps.py - step consolidation for multi-modal routes."""

import pytest

from models import (
    OtherStep,
    Point,
    RawLeg,
    RawRoute,
    RawStep,
    TransitDetails,
    TransitLine,
    TransitStep,
    TransitStop,
    WalkStep,
    parse_route,
)
from polyline_codec import encode
from transit_steps import build_transit_step, consolidate_steps, extract_step_polylines


# =========================================================================
# Helpers
# =========================================================================

def _walk(meters=100, seconds=60, polyline="abc", mode="WALKING"):
    return RawStep(
        travel_mode=mode,
        distance_meters=meters,
        static_duration=f"{seconds}s",
        polyline=polyline,
    )


def _transit(details=None, meters=2000, seconds=600, polyline="xyz"):
    if details is None:
        details = TransitDetails(
            departure_stop=TransitStop("Majestic", Point(12.97, 77.57)),
            arrival_stop=TransitStop("Indiranagar", Point(12.98, 77.64)),
            departure_time="2024-05-15T15:30:00Z",
            arrival_time="2024-05-15T15:50:00Z",
            headsign="Baiyappanahalli",
            num_stops=7,
            line=TransitLine(
                name="Purple Line",
                short_name="P",
                color="#800080",
                text_color="#000000",
                vehicle_name="Metro",
                vehicle_type="SUBWAY",
                agencies=("BMRCL",),
            ),
        )
    return RawStep(
        travel_mode="TRANSIT",
        distance_meters=meters,
        static_duration=f"{seconds}s",
        polyline=polyline,
        transit_details=details,
    )


def _legs(*steps):
    return [RawLeg(steps=tuple(steps))]


# =========================================================================
# consolidate_steps
# =========================================================================

class TestWalkMerging:
    def test_consecutive_walks_merge(self):
        out = consolidate_steps(_legs(
            _walk(100, 60, "aaa"), _walk(50, 30, "bbb"), _walk(25, 15, "ccc"),
        ))
        assert len(out) == 1
        walk = out[0]
        assert isinstance(walk, WalkStep)
        assert walk.distance_meters == 175
        assert walk.duration_seconds == 105
        assert walk.duration == "105s"
        assert walk.polyline == "aaa;bbb;ccc"

    def test_empty_polyline_not_joined(self):
        out = consolidate_steps(_legs(_walk(polyline="aaa"), _walk(polyline="")))
        assert out[0].polyline == "aaa"

    def test_walk_alias_merges_with_walking(self):
        out = consolidate_steps(_legs(_walk(mode="WALK"), _walk(mode="WALKING")))
        assert len(out) == 1

    def test_walks_merge_across_legs(self):
        legs = [RawLeg(steps=(_walk(10),)), RawLeg(steps=(_walk(20),))]
        out = consolidate_steps(legs)
        assert len(out) == 1
        assert out[0].distance_meters == 30


class TestTransitHandling:
    def test_walk_transit_walk(self):
        out = consolidate_steps(_legs(_walk(), _walk(), _transit(), _walk(), _walk()))
        assert [type(s) for s in out] == [WalkStep, TransitStep, WalkStep]

    def test_adjacent_transits_never_merge(self):
        out = consolidate_steps(_legs(_transit(), _transit()))
        assert len(out) == 2
        assert all(isinstance(s, TransitStep) for s in out)

    def test_transit_without_details_is_other(self):
        step = RawStep("TRANSIT", 500, "60s", "p")
        out = consolidate_steps(_legs(_walk(), step, _walk()))
        assert [type(s) for s in out] == [WalkStep, OtherStep, WalkStep]
        assert out[1].mode == "TRANSIT"

    def test_full_transit_fields(self):
        step = consolidate_steps(_legs(_transit()))[0]
        assert step.line == "P"
        assert step.mode == "subway"
        assert step.vehicle == "Metro"
        assert step.agency == "BMRCL"
        assert step.color == "#800080"
        assert step.text_color == "#000000"
        assert step.departure_stop == "Majestic"
        assert step.arrival_stop == "Indiranagar"
        assert step.departure_time == "15:30"
        assert step.arrival_time == "15:50"
        assert step.num_stops == 7
        assert step.departure_coordinates == Point(12.97, 77.57)
        assert step.duration_text == "10 min"


class TestTransitDefaults:
    def test_missing_line_metadata(self):
        details = TransitDetails(
            departure_stop=TransitStop("A"),
            arrival_stop=TransitStop("B"),
        )
        step = build_transit_step(_transit(details))
        assert step.line == ""
        assert step.mode == "transit"
        assert step.vehicle == "Transit"
        assert step.agency == ""
        assert step.color == "#1A73E8"
        assert step.text_color == "#FFFFFF"
        assert step.departure_coordinates is None
        assert step.arrival_coordinates is None

    def test_line_name_used_when_no_short_name(self):
        details = TransitDetails(line=TransitLine(name="Red Line"))
        assert build_transit_step(_transit(details)).line == "Red Line"

    def test_one_stop_missing_uses_both_placeholders(self):
        details = TransitDetails(
            departure_stop=TransitStop("A", Point(1.0, 1.0)),
            departure_time="2024-05-15T15:30:00Z",
        )
        step = build_transit_step(_transit(details))
        assert step.departure_stop == "Departure Stop"
        assert step.arrival_stop == "Arrival Stop"
        assert step.departure_time == ""
        # Coordinates follow each stop independently
        assert step.departure_coordinates == Point(1.0, 1.0)
        assert step.arrival_coordinates is None


class TestOtherSteps:
    def test_drive_step_flushes_walk(self):
        drive = RawStep("DRIVE", 1000, "120s", "d")
        out = consolidate_steps(_legs(_walk(), drive, _walk()))
        assert [type(s) for s in out] == [WalkStep, OtherStep, WalkStep]
        assert out[1].to_dict()["type"] == "DRIVE"

    def test_step_without_mode_skipped(self):
        out = consolidate_steps(_legs(_walk(), RawStep("", 10, "5s", ""), _walk()))
        # The untagged step neither appears nor breaks the walk run
        assert len(out) == 1

    def test_output_never_longer_than_input(self):
        steps = [_walk(), _transit(), RawStep("", 1, "1s", ""), _walk(), RawStep("DRIVE", 1, "1s", "")]
        assert len(consolidate_steps(_legs(*steps))) <= len(steps)

    def test_empty(self):
        assert consolidate_steps([]) == []


# =========================================================================
# Parsing + render segments
# =========================================================================

class TestParseRoute:
    def test_routes_api_payload(self):
        raw = {
            "distanceMeters": 5000,
            "duration": "900s",
            "polyline": {"encodedPolyline": "_p~iF~ps|U"},
            "routeLabels": ["DEFAULT_ROUTE"],
            "legs": [{
                "steps": [
                    {
                        "travelMode": "TRANSIT",
                        "distanceMeters": 4000,
                        "staticDuration": "700s",
                        "polyline": {"encodedPolyline": "abc"},
                        "transitDetails": {
                            "stopDetails": {
                                "departureStop": {
                                    "name": "Civic Center",
                                    "location": {"latLng": {"latitude": 37.78, "longitude": -122.41}},
                                },
                                "arrivalStop": {"name": "Embarcadero"},
                                "departureTime": "2024-05-15T15:30:00Z",
                                "arrivalTime": "2024-05-15T15:42:00Z",
                            },
                            "headsign": "Richmond",
                            "stopCount": 4,
                            "line": {
                                "nameShort": "RED",
                                "vehicle": {"name": {"text": "Subway"}, "type": "SUBWAY"},
                                "agencies": [{"name": "BART"}],
                            },
                        },
                    },
                    {"distanceMeters": 3, "staticDuration": "2s"},
                ],
            }],
        }
        route = parse_route(raw)
        assert route.distance_meters == 5000
        assert route.route_labels == ("DEFAULT_ROUTE",)
        step = route.legs[0].steps[0]
        assert step.transit_details.num_stops == 4
        assert step.transit_details.line.vehicle_name == "Subway"
        assert step.transit_details.departure_stop.location == Point(37.78, -122.41)
        assert step.transit_details.arrival_stop.location is None
        # Missing fields default rather than raise
        assert route.legs[0].steps[1].travel_mode == ""
        assert route.legs[0].steps[1].polyline == ""

    def test_empty_payload(self):
        route = parse_route({})
        assert route.legs == ()
        assert route.polyline == ""


class TestExtractStepPolylines:
    def test_segments_per_step(self):
        walk_line = encode([Point(1.0, 1.0), Point(1.001, 1.0)])
        route = RawRoute(
            distance_meters=0,
            duration="0s",
            polyline="",
            legs=(RawLeg(steps=(
                _walk(polyline=walk_line, mode="WALK"),
                RawStep("", 10, "5s", walk_line),
                RawStep("DRIVE", 10, "5s", ""),
            )),),
        )
        segments = extract_step_polylines(route, "TRANSIT")
        assert len(segments) == 2
        assert segments[0]["travelMode"] == "WALKING"
        assert segments[0]["points"][0] == Point(1.0, 1.0)
        # Untagged steps fall back to the route's mode
        assert segments[1]["travelMode"] == "TRANSIT"
