"""Proximity validation between a reference (scanner) and a candidate (attendee) location.

Both coordinates are client-supplied; only their relative distance is checked,
not whether either is plausible.
"""
from dataclasses import dataclass
from typing import Optional

from app.utils.geo import haversine_distance

REFERENCE = "reference"
CANDIDATE = "candidate"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(frozen=True)
class ProximityVerdict:
    valid: bool
    distance_meters: int
    tolerance_meters: int


class MissingCoordinatesError(Exception):
    """A coordinate needed for proximity validation was not supplied.

    Distinct from an out-of-range verdict: the caller should ask for location
    access (or for the scanner to set its location), not to move closer.
    """

    def __init__(self, side: str):
        self.side = side
        if side == REFERENCE:
            message = "Organizer must set their location first"
        else:
            message = "Location permission required for check-in. Please enable GPS."
        super().__init__(message)


def _is_complete(coord: Optional[Coordinates]) -> bool:
    return coord is not None and coord.lat is not None and coord.lng is not None


def validate_proximity(
    reference: Optional[Coordinates],
    candidate: Optional[Coordinates],
    tolerance_meters: int,
) -> ProximityVerdict:
    """Valid iff the rounded great-circle distance is <= tolerance_meters."""
    if not _is_complete(reference):
        raise MissingCoordinatesError(REFERENCE)
    if not _is_complete(candidate):
        raise MissingCoordinatesError(CANDIDATE)

    distance = int(round(haversine_distance(reference.lat, reference.lng, candidate.lat, candidate.lng)))
    return ProximityVerdict(
        valid=distance <= tolerance_meters,
        distance_meters=distance,
        tolerance_meters=tolerance_meters,
    )
