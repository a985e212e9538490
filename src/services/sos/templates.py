"""
Emergency message templates

Every fan-out pass sends the same body shape; only the headline changes.
"""

from datetime import datetime, tzinfo
from typing import Optional

from src.models.alert import FanOutKind, LocationSnapshot


UNKNOWN_LOCATION = "Unknown location"

HEADLINES = {
    FanOutKind.ACTIVATION: "SOS Emergency Activated",
    FanOutKind.ESCALATION: "Escalation Alert",
    FanOutKind.EXPIRY: "Final Alert - No Response",
}


def format_timestamp(timestamp: datetime, display_tz: Optional[tzinfo] = None) -> str:
    """Format a timestamp as 'Oct 17, 2026 at 3:04 PM'"""
    if display_tz is not None and timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(display_tz)

    hour = timestamp.hour % 12 or 12
    return (
        f"{timestamp:%b} {timestamp.day}, {timestamp.year} "
        f"at {hour}:{timestamp:%M} {timestamp:%p}"
    )


def describe_location(location: Optional[LocationSnapshot]) -> str:
    """Address if known, else 'Unknown location'; coordinates have their own line"""
    if location is None or not location.address:
        return UNKNOWN_LOCATION
    return location.address


def render_emergency_message(
    kind: FanOutKind,
    location: Optional[LocationSnapshot],
    timestamp: datetime,
    display_tz: Optional[tzinfo] = None
) -> str:
    """
    Render the text sent to emergency contacts

    Args:
        kind: Which pass the message belongs to, selects the headline
        location: Latest location snapshot, may be None
        timestamp: Time shown in the message
        display_tz: Optional timezone to present the time in

    Returns:
        The four-line emergency message
    """
    coordinates = location.coordinates_string() if location else "Unknown"

    lines = [
        HEADLINES[kind],
        f"Location: {describe_location(location)}",
        f"Coordinates: {coordinates}",
        f"Time: {format_timestamp(timestamp, display_tz)}",
    ]
    return "\n".join(lines)
