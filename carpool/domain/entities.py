"""
Value objects passed between the API, services and the live channel.

Persistent records are the ORM models in
:mod:`carpool.infrastructure.models`; the types here carry request-scoped
data that never touches the session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class Principal:
    """Identity resolved by the auth gateway; trusted verbatim."""

    user_id: int
    is_driver: bool = False


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float
    address: Optional[str] = None


@dataclass(frozen=True)
class BoundingBox:
    """Coarse inclusive lat/lng box used by ride search."""

    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @classmethod
    def around(cls, lat: float, lng: float, degrees: float) -> "BoundingBox":
        return cls(lat - degrees, lat + degrees, lng - degrees, lng + degrees)


@dataclass(frozen=True)
class LocationUpdate:
    """One driver position as relayed on a ride's live channel."""

    ride_id: int
    latitude: float
    longitude: float
    speed: Optional[float]
    heading: Optional[float]
    timestamp: datetime

    def to_message(self) -> dict[str, Any]:
        return {
            "type": "location-update",
            "ride_id": self.ride_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "heading": self.heading,
            "timestamp": self.timestamp.isoformat(),
        }
