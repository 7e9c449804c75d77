"""Participant profiles and distance between them."""
from __future__ import annotations

import math
from typing import Optional

from pydantic import BaseModel
from pydantic import Field

EARTH_RADIUS_KM = 6371.0


class Coordinate(BaseModel):
    """Geographic coordinate in decimal degrees."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class Profile(BaseModel):
    """Profile a participant announces to its peers.

    Attributes:
        name: Display name.
        preferences: Free-text preference tag.
        about: Free-text bio.
        phone: Contact string.
        picture: Optional image payload.
        location: Optional geographic coordinate.
    """

    name: str = ''
    preferences: str = ''
    about: str = ''
    phone: str = ''
    picture: Optional[bytes] = Field(default=None, repr=False)
    location: Optional[Coordinate] = None

    @property
    def display_name(self) -> str:
        """Name to show for the participant."""
        return self.name or 'Anonymous'


def distance(a: Coordinate, b: Coordinate) -> float:
    """Compute the great-circle distance between two coordinates.

    Uses the haversine formula with a mean Earth radius of
    6371 kilometers.

    Example:
        ```python
        a = Coordinate(latitude=0, longitude=0)
        b = Coordinate(latitude=0, longitude=1)
        assert round(distance(a, b), 2) == 111.19
        ```

    Returns:
        Distance in kilometers.
    """
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude))
        * math.cos(math.radians(b.latitude))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def profile_distance(a: Profile, b: Profile) -> float | None:
    """Distance in kilometers between two profiles if both have a location."""
    if a.location is None or b.location is None:
        return None
    return distance(a.location, b.location)
