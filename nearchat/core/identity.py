# nearchat/core/identity.py

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from nearchat.core.crypto import KeyAgreement
from nearchat.core.errors import EntropyExhausted, IdentityExpired

log = logging.getLogger(__name__)

TOKEN_BYTES = 16            # 128 bits
DEFAULT_GRACE_WINDOW = 5.0  # seconds


@dataclass(frozen=True)
class TemporaryIdentity:
    """
    Ephemeral anonymous identity for one proximity session.

    - token: random, never reused, never derived from user data
    - created_at / expires_at: validity window (epoch seconds)
    """

    token: str
    created_at: float
    expires_at: float

    @property
    def ttl(self) -> float:
        return self.expires_at - self.created_at

    def short(self) -> str:
        return f"anon-{self.token[:8]}"


def is_valid(identity: TemporaryIdentity, at: float) -> bool:
    return identity.created_at <= at < identity.expires_at


class IdentityManager:
    """
    Issues, rotates and expires temporary identities.

    Process-wide state is the current identity plus identities retired by
    rotation that are still inside their grace window. Nothing is persisted.
    """

    def __init__(
        self,
        grace_window: float = DEFAULT_GRACE_WINDOW,
        clock: Callable[[], float] = time.time,
        entropy: Callable[[int], bytes] = secrets.token_bytes,
    ):
        self.grace_window = grace_window
        self._clock = clock
        self._entropy = entropy

        self._lock = threading.Lock()
        self._current: Optional[TemporaryIdentity] = None

        # token -> grace deadline
        self._retired: Dict[str, float] = {}
        # token -> identity, for current + retired
        self._identities: Dict[str, TemporaryIdentity] = {}
        # token -> key pair owned by that identity
        self._keys: Dict[str, KeyAgreement] = {}
        # every token minted by this process
        self._seen = set()

    # ---------------- lifecycle ----------------

    def issue(self, ttl: float) -> TemporaryIdentity:
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        identity = self._mint(ttl)
        with self._lock:
            if self._current is not None:
                self._drop(self._current.token)
            self._install(identity)

        log.info("Issued identity %s (ttl=%ss)", identity.short(), ttl)
        return identity

    def rotate(self, current: TemporaryIdentity) -> TemporaryIdentity:
        """
        Replace `current`. It stays usable for in-flight work until the
        grace window has passed.
        """
        with self._lock:
            if self._current is None or self._current.token != current.token:
                raise IdentityExpired(f"{current.short()} is not the current identity")

        replacement = self._mint(current.ttl)
        now = self._clock()

        with self._lock:
            if self._current is None or self._current.token != current.token:
                raise IdentityExpired(f"{current.short()} was rotated concurrently")
            self._retired[current.token] = now + self.grace_window
            self._install(replacement)

        log.info(
            "Rotated identity %s -> %s (grace %ss)",
            current.short(),
            replacement.short(),
            self.grace_window,
        )
        return replacement

    def is_valid(self, identity: TemporaryIdentity, at: Optional[float] = None) -> bool:
        if at is None:
            at = self._clock()
        return is_valid(identity, at)

    def require_usable(self, identity: TemporaryIdentity, at: Optional[float] = None):
        """
        Raise IdentityExpired unless a new operation may start against
        `identity` at time `at`.
        """
        if at is None:
            at = self._clock()

        if not is_valid(identity, at):
            raise IdentityExpired(f"{identity.short()} expired")

        with self._lock:
            if self._current is not None and self._current.token == identity.token:
                return
            deadline = self._retired.get(identity.token)

        if deadline is None:
            raise IdentityExpired(f"{identity.short()} is not a live local identity")
        if at > deadline:
            raise IdentityExpired(f"{identity.short()} is past its grace window")

    def prune(self, now: Optional[float] = None) -> int:
        """
        Forget retired identities past grace and an expired current identity.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            stale = [token for token, deadline in self._retired.items() if now > deadline]
            if self._current is not None and not is_valid(self._current, now):
                stale.append(self._current.token)
                self._current = None
            for token in stale:
                self._drop(token)

        if stale:
            log.debug("Pruned %d identities", len(stale))
        return len(stale)

    # ---------------- lookups ----------------

    def current(self) -> Optional[TemporaryIdentity]:
        with self._lock:
            return self._current

    def live(self) -> List[TemporaryIdentity]:
        """
        Current identity first, then retired ones still inside grace.
        """
        now = self._clock()
        with self._lock:
            result = [self._current] if self._current is not None else []
            for token, deadline in self._retired.items():
                if now <= deadline:
                    result.append(self._identities[token])
        return result

    def owns(self, token: str) -> bool:
        with self._lock:
            return token in self._identities

    def get(self, token: str) -> Optional[TemporaryIdentity]:
        with self._lock:
            return self._identities.get(token)

    def keys_for(self, identity: TemporaryIdentity) -> KeyAgreement:
        with self._lock:
            keys = self._keys.get(identity.token)
        if keys is None:
            raise IdentityExpired(f"No key material for {identity.short()}")
        return keys

    # ---------------- internal ----------------

    def _mint(self, ttl: float) -> TemporaryIdentity:
        try:
            token = self._entropy(TOKEN_BYTES).hex()
        except (OSError, NotImplementedError) as exc:
            raise EntropyExhausted("Entropy source failed") from exc

        with self._lock:
            if token in self._seen or len(token) != TOKEN_BYTES * 2:
                raise EntropyExhausted("Entropy source returned a repeated token")
            self._seen.add(token)

        now = self._clock()
        return TemporaryIdentity(token=token, created_at=now, expires_at=now + ttl)

    def _install(self, identity: TemporaryIdentity):
        self._current = identity
        self._identities[identity.token] = identity
        self._keys[identity.token] = KeyAgreement()

    def _drop(self, token: str):
        self._retired.pop(token, None)
        self._identities.pop(token, None)
        keys = self._keys.pop(token, None)
        if keys is not None:
            keys.forget()
