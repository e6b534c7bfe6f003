# nearchat/relay/memory.py

import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

ENVELOPE_FIELDS = frozenset({"ct", "nonce", "tag"})
TOMBSTONE_TTL = 300  # seconds


class RelayResult(str, Enum):
    OK = "ok"
    NOT_FOUND = "notFound"


class DeliveryStatus(str, Enum):
    PENDING = "pending"   # stored, not yet consumed
    FETCHED = "fetched"   # recipient fetched and deleted it
    UNKNOWN = "unknown"   # never seen, purged, or deleted unread


@dataclass(frozen=True)
class EphemeralMessage:
    """
    What the relay holds: ciphertext plus addressing, never plaintext.
    """

    message_id: str
    to_token: str
    from_token: str
    envelope: dict
    sent_at: float
    expires_at: float


class Relay(ABC):
    """
    Untrusted store-and-forward relay.

    Implementations raise RelayTimeout / RelayUnavailable on transport
    failure and must never see key material.
    """

    @abstractmethod
    def put(self, to_token: str, from_token: str, envelope: dict, ttl: float,
            message_id: Optional[str] = None) -> str:
        """
        Store an envelope. Repeating a put with the same message_id stores
        nothing new and returns the same id.
        """

    @abstractmethod
    def fetch(self, to_token: str) -> List[Tuple[str, EphemeralMessage]]:
        ...

    @abstractmethod
    def delete(self, message_id: str) -> RelayResult:
        ...

    @abstractmethod
    def status(self, message_id: str) -> DeliveryStatus:
        ...


class MemoryRelay(Relay):
    """
    In-process relay.

    - Messages live until deleted or until their ttl lapses
    - Deleting a message that was fetched leaves a short tombstone so the
      sender can learn it was delivered
    """

    def __init__(self, clock: Callable[[], float] = time.time, tombstone_ttl: float = TOMBSTONE_TTL):
        self._clock = clock
        self.tombstone_ttl = tombstone_ttl

        self._lock = threading.Lock()
        self._messages: Dict[str, EphemeralMessage] = {}
        self._fetched = set()
        # message_id -> deleted_at, for delete-after-fetch
        self._tombstones: Dict[str, float] = {}
        # message_id -> deleted_at, for any delete; late puts are ignored
        self._deleted: Dict[str, float] = {}

    def put(self, to_token: str, from_token: str, envelope: dict, ttl: float,
            message_id: Optional[str] = None) -> str:
        if not isinstance(envelope, dict) or set(envelope) != ENVELOPE_FIELDS:
            raise ValueError("Relay only accepts sealed envelopes")
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self._clock()
        message = EphemeralMessage(
            message_id=message_id or secrets.token_hex(16),
            to_token=to_token,
            from_token=from_token,
            envelope=dict(envelope),
            sent_at=now,
            expires_at=now + ttl,
        )
        with self._lock:
            self._purge(now)
            if message.message_id in self._messages or message.message_id in self._deleted:
                return message.message_id
            self._messages[message.message_id] = message
        return message.message_id

    def fetch(self, to_token: str) -> List[Tuple[str, EphemeralMessage]]:
        with self._lock:
            self._purge(self._clock())
            found = [
                (message_id, message)
                for message_id, message in self._messages.items()
                if message.to_token == to_token
            ]
            self._fetched.update(message_id for message_id, _ in found)
        found.sort(key=lambda item: item[1].sent_at)
        return found

    def delete(self, message_id: str) -> RelayResult:
        with self._lock:
            now = self._clock()
            self._purge(now)
            message = self._messages.pop(message_id, None)
            if message is None:
                return RelayResult.NOT_FOUND
            self._deleted[message_id] = now
            if message_id in self._fetched:
                self._fetched.discard(message_id)
                self._tombstones[message_id] = now
        return RelayResult.OK

    def status(self, message_id: str) -> DeliveryStatus:
        with self._lock:
            self._purge(self._clock())
            if message_id in self._messages:
                return DeliveryStatus.PENDING
            if message_id in self._tombstones:
                return DeliveryStatus.FETCHED
        return DeliveryStatus.UNKNOWN

    def pending(self, to_token: Optional[str] = None) -> int:
        with self._lock:
            self._purge(self._clock())
            if to_token is None:
                return len(self._messages)
            return sum(1 for m in self._messages.values() if m.to_token == to_token)

    # ---------------- internal ----------------

    def _purge(self, now: float):
        expired = [mid for mid, m in self._messages.items() if now >= m.expires_at]
        for message_id in expired:
            del self._messages[message_id]
            self._fetched.discard(message_id)
            self._deleted[message_id] = now

        stale = [mid for mid, at in self._tombstones.items() if now - at > self.tombstone_ttl]
        for message_id in stale:
            del self._tombstones[message_id]

        forgotten = [mid for mid, at in self._deleted.items() if now - at > self.tombstone_ttl]
        for message_id in forgotten:
            del self._deleted[message_id]
