# nearchat/core/fusion.py

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, List, Optional

from nearchat.core.sensing import Sighting, SignalKind

log = logging.getLogger(__name__)

RADIO_DECAY = 10.0  # seconds
GEO_DECAY = 60.0    # seconds, fixes arrive less often


class Confidence(IntEnum):
    LOW = 1      # geo only
    MEDIUM = 2   # radio only
    HIGH = 3     # radio and geo agree


@dataclass(frozen=True)
class NearbyEntry:
    identity: object
    last_seen_at: float
    confidence: Confidence
    sources: frozenset
    strength: float = 0.0

    @property
    def token(self) -> str:
        return self.identity.token


@dataclass
class _Track:
    identity: object
    # kind -> newest observed_at
    seen: Dict[SignalKind, float] = field(default_factory=dict)
    # kind -> strength of the newest sighting
    strength: Dict[SignalKind, float] = field(default_factory=dict)


def confidence_for(sources) -> Confidence:
    if SignalKind.RADIO in sources and SignalKind.GEO in sources:
        return Confidence.HIGH
    if SignalKind.RADIO in sources:
        return Confidence.MEDIUM
    return Confidence.LOW


class ProximityFusion:
    """
    Fuses radio and geo sightings into one nearby set.

    Keeps an in-memory table:
      token -> per-source last seen + strength

    Sensing producers hand sightings over with push(); the engine drains
    its own inbox with pump(). observe() is the synchronous upsert.
    """

    def __init__(
        self,
        radio_decay: float = RADIO_DECAY,
        geo_decay: float = GEO_DECAY,
        is_local: Optional[Callable[[str], bool]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.windows = {
            SignalKind.RADIO: radio_decay,
            SignalKind.GEO: geo_decay,
        }
        self.is_local = is_local
        self._clock = clock

        self._lock = threading.Lock()
        self._tracks: Dict[str, _Track] = {}
        self.inbox: "queue.Queue[Sighting]" = queue.Queue()

        self.dropped_stale = 0

    # ---------------- intake ----------------

    def push(self, sighting: Sighting):
        """
        Thread-safe handoff from sensing producers.
        """
        self.inbox.put_nowait(sighting)

    def pump(self) -> int:
        applied = 0
        while True:
            try:
                sighting = self.inbox.get_nowait()
            except queue.Empty:
                return applied
            if self.observe(sighting):
                applied += 1

    def observe(self, sighting: Sighting) -> bool:
        """
        Idempotent upsert. Returns False if the sighting was dropped.
        """
        identity = sighting.identity
        now = self._clock()

        if self.is_local and self.is_local(identity.token):
            return False

        # created_at is the peer's own clock; only expiry is checked
        if sighting.observed_at >= identity.expires_at or now >= identity.expires_at:
            with self._lock:
                self.dropped_stale += 1
            log.debug("Dropped sighting of expired identity anon-%s", identity.token[:8])
            return False

        kind = SignalKind(sighting.kind)

        with self._lock:
            track = self._tracks.get(identity.token)
            if track is None:
                track = _Track(identity=identity)
                self._tracks[identity.token] = track
                log.debug("New nearby identity anon-%s via %s", identity.token[:8], kind.value)

            previous = track.seen.get(kind)
            if previous is None or sighting.observed_at >= previous:
                track.seen[kind] = sighting.observed_at
                track.strength[kind] = float(sighting.strength)

        return True

    # ---------------- views ----------------

    def snapshot(self, now: Optional[float] = None) -> List[NearbyEntry]:
        """
        Evict decayed sources and entries, then return the nearby set,
        strongest confidence first, most recent first within a tier.
        """
        self.pump()
        if now is None:
            now = self._clock()

        entries = []
        with self._lock:
            for token in list(self._tracks):
                track = self._tracks[token]

                if now >= track.identity.expires_at:
                    del self._tracks[token]
                    continue

                live = {
                    kind: seen
                    for kind, seen in track.seen.items()
                    if now - seen <= self.windows[kind]
                }
                if not live:
                    del self._tracks[token]
                    continue

                track.seen = live
                track.strength = {kind: track.strength[kind] for kind in live}

                newest = max(live, key=live.get)
                entries.append(
                    NearbyEntry(
                        identity=track.identity,
                        last_seen_at=live[newest],
                        confidence=confidence_for(live),
                        sources=frozenset(live),
                        strength=track.strength[newest],
                    )
                )

        entries.sort(key=lambda e: (e.confidence, e.last_seen_at), reverse=True)
        return entries

    def get(self, token: str, now: Optional[float] = None) -> Optional[NearbyEntry]:
        for entry in self.snapshot(now):
            if entry.token == token:
                return entry
        return None

    def is_nearby(self, token: str, now: Optional[float] = None) -> bool:
        return self.get(token, now) is not None

    def clear(self):
        with self._lock:
            self._tracks.clear()
