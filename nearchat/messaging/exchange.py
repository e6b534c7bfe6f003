# nearchat/messaging/exchange.py

import logging
import secrets
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from nearchat.core.crypto import Envelope, associated_data, open_envelope, seal
from nearchat.core.errors import (
    AuthenticationError,
    IdentityExpired,
    NotNearbyError,
    RelayError,
    RelayTimeout,
    RelayUnavailable,
)
from nearchat.relay.memory import DeliveryStatus, RelayResult

log = logging.getLogger(__name__)
integrity_log = logging.getLogger("nearchat.integrity")

MESSAGE_TTL = 120.0      # seconds
RELAY_RETRIES = 3
RELAY_BACKOFF = 0.2      # seconds, doubled per attempt
RELAY_TIMEOUT = 5.0      # seconds
CONSUMED_MEMORY = 1024   # message ids remembered after delete-on-read


class MessageState(str, Enum):
    COMPOSED = "composed"
    SEALED = "sealed"
    SUBMITTED = "submitted"
    DELIVERED = "delivered"
    EXPIRED = "expired"
    UNDELIVERED = "undelivered"


FINAL_STATES = frozenset({MessageState.DELIVERED, MessageState.EXPIRED, MessageState.UNDELIVERED})


@dataclass
class OutboundMessage:
    to_token: str
    from_identity: object
    state: MessageState = MessageState.COMPOSED
    message_id: Optional[str] = None
    sent_at: Optional[float] = None
    expires_at: Optional[float] = None
    error: Optional[str] = None
    local_id: str = field(default_factory=lambda: secrets.token_hex(8))

    @property
    def finished(self) -> bool:
        return self.state in FINAL_STATES


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    from_token: str
    to_token: str
    text: str
    sent_at: float


class ExchangeCoordinator:
    """
    Ephemeral message exchange over an untrusted relay.

    Outbound:  composed -> sealed -> submitted -> delivered | expired
    Inbound:   fetch -> open -> delete-on-read -> surface

    Responsibilities:
    - Gate sends on the nearby snapshot
    - Seal and open every message body
    - Keep the relay clean (delete-on-read, delete-on-expiry)

    Non-responsibilities:
    - No key exchange (keys come from the identity's KeyAgreement)
    - No transport details (relay is injected)
    """

    def __init__(
        self,
        identities,
        fusion,
        relay,
        message_ttl: float = MESSAGE_TTL,
        relay_retries: int = RELAY_RETRIES,
        relay_backoff: float = RELAY_BACKOFF,
        relay_timeout: Optional[float] = RELAY_TIMEOUT,
        on_integrity_drop: Optional[Callable[[str, str], None]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.identities = identities
        self.fusion = fusion
        self.relay = relay
        self.message_ttl = message_ttl
        self.relay_retries = relay_retries
        self.relay_backoff = relay_backoff
        self.relay_timeout = relay_timeout
        self.on_integrity_drop = on_integrity_drop
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        # local_id -> OutboundMessage, while submitted
        self._outbound: Dict[str, OutboundMessage] = {}
        # message_id -> lock, serialises delete per message
        self._delete_locks: Dict[str, threading.Lock] = {}
        # message ids consumed by us; never surfaced twice
        self._consumed: "OrderedDict[str, float]" = OrderedDict()
        # message ids whose relay delete still has to succeed
        self._pending_deletes = set()

        self.integrity_drops = 0
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="relay")

    # ---------------- outbound ----------------

    def submit(self, to_token: str, plaintext: str, from_identity=None) -> OutboundMessage:
        now = self._clock()
        sender = from_identity or self.identities.current()
        if sender is None:
            raise IdentityExpired("No current identity")
        self.identities.require_usable(sender, now)

        message = OutboundMessage(to_token=to_token, from_identity=sender)

        peer = self.fusion.get(to_token, now)
        if peer is None:
            message.state = MessageState.UNDELIVERED
            message.error = "not nearby"
            raise NotNearbyError(f"anon-{to_token[:8]} is not nearby")

        keys = self.identities.keys_for(sender)
        try:
            session = keys.session(to_token, now)
        except KeyError:
            message.state = MessageState.UNDELIVERED
            message.error = "no session key"
            raise NotNearbyError(f"No session key for anon-{to_token[:8]} yet") from None

        envelope = seal(plaintext, session.key, associated_data(sender.token, to_token))
        message.state = MessageState.SEALED

        ttl = min(self.message_ttl, sender.expires_at - now, peer.identity.expires_at - now)
        # one id for every attempt, so a late first put and its retry collapse
        message_id = secrets.token_hex(16)
        try:
            message_id = self._with_retries(
                "put", self.relay.put, to_token, sender.token, envelope.to_wire(), ttl, message_id
            )
        except RelayError as exc:
            message.state = MessageState.UNDELIVERED
            message.error = str(exc) or type(exc).__name__
            log.warning("Send to anon-%s undelivered: %s", to_token[:8], message.error)
            raise

        message.message_id = message_id
        message.sent_at = now
        message.expires_at = now + ttl
        message.state = MessageState.SUBMITTED

        with self._lock:
            self._outbound[message.local_id] = message

        log.info("Submitted %s to anon-%s", message_id[:8], to_token[:8])
        return message

    def outbound(self) -> List[OutboundMessage]:
        with self._lock:
            return list(self._outbound.values())

    def refresh(self, now: Optional[float] = None) -> List[OutboundMessage]:
        """
        Advance submitted messages to delivered or expired, and retry
        relay cleanup that failed earlier. Returns messages that finished.
        """
        if now is None:
            now = self._clock()

        self._retry_pending_deletes()

        finished = []
        for message in self.outbound():
            try:
                status = self._call(self.relay.status, message.message_id)
            except RelayError as exc:
                log.debug("Status check for %s failed: %s", message.message_id[:8], exc)
                continue

            if status == DeliveryStatus.FETCHED:
                message.state = MessageState.DELIVERED
            elif status == DeliveryStatus.UNKNOWN:
                message.state = MessageState.EXPIRED
            elif now >= message.expires_at or not self.identities.is_valid(message.from_identity, now):
                self._expire(message)

            if message.finished:
                finished.append(message)

        if finished:
            with self._lock:
                for message in finished:
                    self._outbound.pop(message.local_id, None)
            for message in finished:
                log.info("Message %s %s", message.message_id[:8], message.state.value)
        return finished

    # ---------------- inbound ----------------

    def poll(self, local_identity=None) -> List[str]:
        return [message.text for message in self.receive(local_identity)]

    def receive(self, local_identity=None) -> List[InboundMessage]:
        now = self._clock()
        identity = local_identity or self.identities.current()
        if identity is None:
            return []
        self.identities.require_usable(identity, now)

        items = self._with_retries("fetch", self.relay.fetch, identity.token)
        keys = self.identities.keys_for(identity)

        received = []
        for message_id, item in items:
            with self._delete_lock(message_id):
                if self._was_consumed(message_id):
                    continue

                try:
                    text = self._open(item, identity, keys, now)
                except (AuthenticationError, IdentityExpired) as exc:
                    self._delete(message_id)
                    self._mark_consumed(message_id, now)
                    self._integrity_drop(message_id, str(exc) or type(exc).__name__)
                    continue

                # delete before surfacing; a failed delete is retried later
                self._delete(message_id)
                self._mark_consumed(message_id, now)

            received.append(
                InboundMessage(
                    message_id=message_id,
                    from_token=item.from_token,
                    to_token=item.to_token,
                    text=text,
                    sent_at=item.sent_at,
                )
            )
        return received

    def close(self):
        self._executor.shutdown(wait=False)

    # ---------------- internal ----------------

    def _open(self, item, identity, keys, now: float) -> str:
        if item.to_token != identity.token:
            raise AuthenticationError("misaddressed envelope")

        try:
            session = keys.session(item.from_token, now)
        except KeyError:
            raise AuthenticationError("unknown sender") from None

        envelope = Envelope.from_wire(item.envelope)
        data = open_envelope(envelope, session.key, associated_data(item.from_token, item.to_token))
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise AuthenticationError("payload is not text") from exc

    def _expire(self, message: OutboundMessage):
        try:
            result = self._with_retries("delete", self.relay.delete, message.message_id)
        except RelayError:
            with self._lock:
                self._pending_deletes.add(message.message_id)
            message.state = MessageState.EXPIRED
            log.warning("Expired %s; relay cleanup pending", message.message_id[:8])
            return

        # gone already means the recipient consumed it in the meantime
        if result == RelayResult.NOT_FOUND:
            message.state = MessageState.DELIVERED
        else:
            message.state = MessageState.EXPIRED

    def _delete(self, message_id: str) -> bool:
        try:
            self._with_retries("delete", self.relay.delete, message_id)
        except RelayError:
            with self._lock:
                self._pending_deletes.add(message_id)
            log.warning("Delete of %s failed; will retry", message_id[:8])
            return False
        return True

    def _retry_pending_deletes(self):
        with self._lock:
            pending = list(self._pending_deletes)
        for message_id in pending:
            with self._delete_lock(message_id):
                try:
                    self._call(self.relay.delete, message_id)
                except RelayError:
                    continue
                with self._lock:
                    self._pending_deletes.discard(message_id)

    def _integrity_drop(self, message_id: str, reason: str):
        with self._lock:
            self.integrity_drops += 1
        integrity_log.warning("Dropped message %s: %s", message_id[:8], reason)
        if self.on_integrity_drop:
            try:
                self.on_integrity_drop(message_id, reason)
            except Exception:
                integrity_log.exception("on_integrity_drop hook failed for %s", message_id[:8])

    def _delete_lock(self, message_id: str) -> threading.Lock:
        with self._lock:
            lock = self._delete_locks.get(message_id)
            if lock is None:
                lock = threading.Lock()
                self._delete_locks[message_id] = lock
                if len(self._delete_locks) > CONSUMED_MEMORY:
                    oldest = next(iter(self._delete_locks))
                    if oldest != message_id:
                        del self._delete_locks[oldest]
            return lock

    def _was_consumed(self, message_id: str) -> bool:
        with self._lock:
            return message_id in self._consumed

    def _mark_consumed(self, message_id: str, now: float):
        with self._lock:
            self._consumed[message_id] = now
            while len(self._consumed) > CONSUMED_MEMORY:
                self._consumed.popitem(last=False)

    def _call(self, fn, *args):
        """
        One relay call, bounded by relay_timeout.
        """
        if self.relay_timeout is None:
            try:
                return fn(*args)
            except OSError as exc:
                raise RelayUnavailable(str(exc)) from exc

        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self.relay_timeout)
        except FutureTimeout:
            future.cancel()
            raise RelayTimeout(f"relay call exceeded {self.relay_timeout}s") from None
        except OSError as exc:
            raise RelayUnavailable(str(exc)) from exc

    def _with_retries(self, op: str, fn, *args):
        """
        Retry transport failures with exponential backoff. Anything that is
        not a RelayError propagates on the first attempt.
        """
        attempts = self.relay_retries + 1
        for attempt in range(attempts):
            try:
                return self._call(fn, *args)
            except RelayError as exc:
                if attempt == attempts - 1:
                    raise
                delay = self.relay_backoff * (2 ** attempt)
                log.debug("relay %s failed (%s); retry %d/%d in %.2fs",
                          op, type(exc).__name__, attempt + 1, self.relay_retries, delay)
                self._sleep(delay)
