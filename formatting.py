"""Display formatting for step durations, distances and transit times."""

import logging
from datetime import datetime

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.34
FEET_PER_MILE = 5280


def parse_duration_seconds(duration: str) -> int:
    """Parse a Routes API duration string ("754s") into whole seconds.

    Returns 0 for empty or malformed values.
    """
    if not duration:
        return 0
    try:
        return int(float(duration.strip().rstrip("s")))
    except ValueError:
        logger.warning("Unparseable duration %r, treating as 0s", duration)
        return 0


def format_duration(seconds: int) -> str:
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours} hr {minutes} min"
    return f"{minutes} min"


def format_distance(meters: float) -> str:
    """Imperial display distance: feet under a mile, else miles to 0.1."""
    miles = meters / METERS_PER_MILE
    if miles < 1:
        return f"{miles * FEET_PER_MILE:.0f} ft"
    return f"{miles:.1f} mi"


def format_transit_time(timestamp: str) -> str:
    """Format an RFC 3339 timestamp ("2024-05-15T15:30:00Z") as "15:30".

    Falls back to the raw string when it cannot be parsed.
    """
    if not timestamp:
        return ""
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable transit time %r", timestamp)
        return timestamp
    return parsed.strftime("%H:%M")
