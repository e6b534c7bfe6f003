# nearchat/core/discovery.py

import logging
import threading
import time

from nearchat.core.errors import IdentityExpired
from nearchat.core.identity import TemporaryIdentity
from nearchat.core.sensing import Sighting, SignalKind

log = logging.getLogger(__name__)

MAX_PEER_TTL = 24 * 3600  # seconds


class Beacon:
    """
    Short-range presence beacon over UDP broadcast.

    Protocol (one JSON object per datagram):
      {"t": "GM",     "id": token, "created": ts, "exp": ts, "pub": key}
      {"t": "GM_ACK", "id": token, "created": ts, "exp": ts, "pub": key}

    Every beacon heard becomes a RADIO sighting pushed to `sink` and
    registers the peer's public key with each live local identity.
    """

    GM_INTERVAL = 3  # seconds

    def __init__(self, transport, identities, sink, broadcast_ip: str, port: int):
        self.transport = transport
        self.identities = identities
        self.sink = sink
        self.broadcast_ip = broadcast_ip
        self.port = port

        self.running = False
        self._threads = []

    def start(self):
        self.running = True
        self._threads = [
            threading.Thread(target=self._broadcast_loop, daemon=True),
            threading.Thread(target=self._listen_loop, daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def stop(self):
        self.running = False

    def announcement(self, kind: str = "GM"):
        identity = self.identities.current()
        if identity is None:
            return None
        keys = self.identities.keys_for(identity)
        return {
            "t": kind,
            "id": identity.token,
            "created": identity.created_at,
            "exp": identity.expires_at,
            "pub": keys.public_key_b64,
        }

    def handle(self, payload: dict, ip: str):
        """
        Process one received beacon. Returns the pushed sighting or None.
        """
        msg_type = payload.get("t")
        if msg_type not in ("GM", "GM_ACK"):
            log.debug("drop unknown beacon type %r from %s", msg_type, ip)
            return None

        peer = self._parse_identity(payload)
        if peer is None:
            log.debug("drop malformed beacon from %s", ip)
            return None

        # Ignore our own broadcasts
        if self.identities.owns(peer.token):
            return None

        # created is read off the peer's clock; only expiry is checked here
        now = time.time()
        if now >= peer.expires_at:
            log.debug("drop beacon for expired identity %s", peer.short())
            return None

        pub_key = payload.get("pub")
        for local in self.identities.live():
            try:
                self.identities.keys_for(local).register_peer(local, peer, pub_key)
            except IdentityExpired:
                # pruned since live() was read
                continue
            except (ValueError, TypeError, AttributeError):
                log.debug("drop beacon with bad public key from %s", ip)
                return None

        sighting = Sighting(
            identity=peer,
            kind=SignalKind.RADIO,
            strength=1.0,
            observed_at=now,
        )
        self.sink(sighting)

        if msg_type == "GM":
            ack = self.announcement("GM_ACK")
            if ack is not None:
                self.transport.send(ack, ip, self.port)

        return sighting

    # ---------------- internal ----------------

    def _parse_identity(self, payload: dict):
        token = payload.get("id")
        try:
            created = float(payload.get("created"))
            expires = float(payload.get("exp"))
        except (TypeError, ValueError):
            return None

        if not isinstance(token, str) or len(token) != 32:
            return None
        if not (created < expires <= created + MAX_PEER_TTL):
            return None
        return TemporaryIdentity(token=token, created_at=created, expires_at=expires)

    def _broadcast_loop(self):
        while self.running:
            msg = self.announcement()
            try:
                if msg is not None:
                    self.transport.send(msg, self.broadcast_ip, self.port)
            except OSError:
                if not self.running:
                    break
                log.warning("beacon broadcast failed", exc_info=True)
            time.sleep(self.GM_INTERVAL)

    def _listen_loop(self):
        while self.running:
            try:
                payload, ip, _ = self.transport.recv()
            except TimeoutError:
                continue
            except OSError:
                if not self.running:
                    break
                continue

            if payload is None:
                log.debug("drop non-JSON datagram from %s", ip)
                continue

            try:
                self.handle(payload, ip)
            except OSError:
                log.debug("beacon ack to %s failed", ip)
            except Exception:
                log.exception("beacon from %s not handled", ip)
