"""
Street View sampling along a decoded route.

A route is represented for risk scoring by at most ``max_images`` Street
View Static API images: evenly spaced samples along the decoded path
plus the destination itself. Each camera faces the next sample so the
image shows the road ahead.
"""

import logging
from typing import List, Sequence, TypeVar
from urllib.parse import urlencode

from models import Point, StreetViewImage
from polyline_codec import heading_deg

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREET_VIEW_URL = "https://maps.googleapis.com/maps/api/streetview"
IMAGE_SIZE = "400x300"
FIELD_OF_VIEW = 90
PITCH = 0
DEFAULT_MAX_IMAGES = 10


def evenly_spaced_samples(items: Sequence[T], count: int) -> List[T]:
    """Pick ``count`` items at even index spacing, always starting at index 0."""
    if len(items) <= count:
        return list(items)
    step = len(items) / count
    return [items[min(int(i * step), len(items) - 1)] for i in range(count)]


def street_view_url(location: Point, heading: float, api_key: str = "") -> str:
    """Static API URL. The key parameter is left out when ``api_key`` is empty."""
    params = {
        "size": IMAGE_SIZE,
        "location": f"{location.lat},{location.lng}",
        "fov": FIELD_OF_VIEW,
        "heading": round(heading, 2),
        "pitch": PITCH,
    }
    if api_key:
        params["key"] = api_key
    return f"{STREET_VIEW_URL}?{urlencode(params, safe=',')}"


def _image(location: Point, heading: float, index: int, api_key: str, client_key: str) -> StreetViewImage:
    return StreetViewImage(
        url=street_view_url(location, heading, client_key),
        location=location,
        heading=heading,
        index=index,
        fetch_url=street_view_url(location, heading, api_key),
    )


def sample_street_view_images(
    points: Sequence[Point],
    api_key: str,
    max_images: int = DEFAULT_MAX_IMAGES,
    client_key: str = "",
) -> List[StreetViewImage]:
    """Build the Street View images that represent a route.

    ``api_key`` only goes into each image's ``fetch_url``. The public
    ``url`` carries ``client_key`` (a referrer-restricted browser key)
    or no key at all.

    Routes with fewer than two points have no direction of travel and
    get no images.
    """
    if len(points) < 2:
        return []

    # One slot is reserved for the destination.
    samples = evenly_spaced_samples(points, max(max_images - 1, 1))
    destination = points[-1]

    images = []
    for i, current in enumerate(samples):
        if i < len(samples) - 1:
            heading = heading_deg(current, samples[i + 1])
        elif current != destination:
            heading = heading_deg(current, destination)
        else:
            # Last sample is the destination itself; face along the final segment.
            heading = heading_deg(points[-2], destination)
        images.append(_image(current, heading, i, api_key, client_key))

    if samples[-1] != destination:
        heading = heading_deg(points[-2], destination)
        images.append(_image(destination, heading, len(images), api_key, client_key))

    logger.debug("Sampled %d street view images from %d points", len(images), len(points))
    return images
