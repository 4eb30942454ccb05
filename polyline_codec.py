"""
Encoded polyline codec and great-circle helpers.

Implements the Google encoded polyline format: each coordinate is rounded
to 1e-5 degrees, delta-encoded against the previous point (the first point
against the origin), zig-zag mapped to an unsigned integer, then written as
little-endian 5-bit groups offset by 63 ('?') with 0x20 marking
continuation. Latitude precedes longitude for every point.

Round-trip is lossless up to the 1e-5 rounding step.
"""

import math
from typing import List, Sequence, Tuple

from models import Point

PRECISION = 1e5
_OFFSET = 63
_CHUNK_MASK = 0x1F
_CONTINUATION = 0x20

EARTH_RADIUS_M = 6371000.0


# =============================================================================
# ENCODE
# =============================================================================

def _round_half_up(value: float) -> int:
    return int(math.floor(value * PRECISION + 0.5))


def _encode_value(value: int) -> str:
    value = ~(value << 1) if value < 0 else value << 1
    chunks = []
    while value >= _CONTINUATION:
        chunks.append(chr((_CONTINUATION | (value & _CHUNK_MASK)) + _OFFSET))
        value >>= 5
    chunks.append(chr(value + _OFFSET))
    return "".join(chunks)


def encode(points: Sequence[Point]) -> str:
    """Encode an ordered point sequence. Empty input gives an empty string."""
    out = []
    prev_lat = 0
    prev_lng = 0
    for point in points:
        lat = _round_half_up(point.lat)
        lng = _round_half_up(point.lng)
        out.append(_encode_value(lat - prev_lat))
        out.append(_encode_value(lng - prev_lng))
        prev_lat, prev_lng = lat, lng
    return "".join(out)


# =============================================================================
# DECODE
# =============================================================================

def _decode_value(encoded: str, index: int) -> Tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if index >= len(encoded):
            raise ValueError(f"Truncated polyline at offset {index}")
        chunk = ord(encoded[index]) - _OFFSET
        index += 1
        result |= (chunk & _CHUNK_MASK) << shift
        shift += 5
        if chunk < _CONTINUATION:
            break
    value = ~(result >> 1) if result & 1 else result >> 1
    return value, index


def decode(encoded: str) -> List[Point]:
    """Decode a polyline produced by a conformant encoder."""
    points = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        delta, index = _decode_value(encoded, index)
        lat += delta
        delta, index = _decode_value(encoded, index)
        lng += delta
        points.append(Point(lat / PRECISION, lng / PRECISION))
    return points


# =============================================================================
# GREAT-CIRCLE HELPERS
# =============================================================================

def haversine_m(a: Point, b: Point) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dphi = math.radians(b.lat - a.lat)
    dlmb = math.radians(b.lng - a.lng)

    s = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(s), math.sqrt(1 - s))


def heading_deg(a: Point, b: Point) -> float:
    # Initial bearing (forward azimuth), degrees true, [0,360)
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dlmb = math.radians(b.lng - a.lng)

    y = math.sin(dlmb) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0
