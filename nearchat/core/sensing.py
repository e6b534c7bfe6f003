# nearchat/core/sensing.py

import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

EARTH_RADIUS_M = 6371000.0
DEFAULT_GEO_RADIUS = 150.0  # metres


class SignalKind(str, Enum):
    RADIO = "radio"
    GEO = "geo"


@dataclass(frozen=True)
class Sighting:
    """
    One raw observation of a peer identity by a single sensing modality.
    `identity` is the peer's TemporaryIdentity as it advertised itself.
    """

    identity: object
    kind: SignalKind
    strength: float
    observed_at: float


def haversine_m(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


class GeoSource:
    """
    Coarse geolocation sensing.

    Turns peer location fixes into GEO sightings when they fall within
    `radius_m` of our own last fix. Location is never stored beyond the
    latest own fix.
    """

    def __init__(
        self,
        sink: Callable[[Sighting], None],
        radius_m: float = DEFAULT_GEO_RADIUS,
        clock: Callable[[], float] = time.time,
    ):
        self.sink = sink
        self.radius_m = radius_m
        self._clock = clock
        self._lock = threading.Lock()
        self._own_fix: Optional[Tuple[float, float]] = None

    def set_own_fix(self, lat: float, lon: float):
        with self._lock:
            self._own_fix = (float(lat), float(lon))

    def clear(self):
        with self._lock:
            self._own_fix = None

    def report_fix(self, identity, lat: float, lon: float, at: Optional[float] = None) -> Optional[Sighting]:
        """
        Push a GEO sighting for `identity` if it is within range.
        Returns the sighting pushed, or None.
        """
        with self._lock:
            own = self._own_fix
        if own is None:
            return None

        distance = haversine_m(own, (float(lat), float(lon)))
        if distance > self.radius_m:
            return None

        sighting = Sighting(
            identity=identity,
            kind=SignalKind.GEO,
            strength=1.0 - distance / self.radius_m,
            observed_at=self._clock() if at is None else at,
        )
        self.sink(sighting)
        return sighting
