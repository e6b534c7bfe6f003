# nearchat/messaging/poller.py

import logging
import queue
import threading
from typing import Callable, Optional

from nearchat.core.errors import IdentityExpired, RelayError

log = logging.getLogger(__name__)

POLL_INTERVAL = 2.0  # seconds, fallback cadence without wake hints


class PollLoop:
    """
    Background receive loop.

    Wakes on push hints (hint()) or every `interval` seconds, whichever
    comes first. A missing hint only delays delivery.
    """

    def __init__(
        self,
        coordinator,
        on_message: Callable,
        interval: float = POLL_INTERVAL,
    ):
        self.coordinator = coordinator
        self.on_message = on_message
        self.interval = interval

        self.hints: "queue.Queue[None]" = queue.Queue()
        self.running = False
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self.running = True
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def stop(self):
        self.running = False
        self.hint()

    def hint(self):
        self.hints.put_nowait(None)

    def run_once(self) -> int:
        """
        One cycle: drain sightings, poll every live identity, advance
        outbound messages, prune identities. Returns messages delivered.
        """
        coordinator = self.coordinator
        coordinator.fusion.pump()

        delivered = 0
        for identity in coordinator.identities.live():
            try:
                messages = coordinator.receive(identity)
            except IdentityExpired:
                continue
            except RelayError as exc:
                log.warning("Poll for %s failed: %s", identity.short(), type(exc).__name__)
                continue

            for message in messages:
                self.on_message(message.from_token, message.text)
                delivered += 1

        coordinator.refresh()
        coordinator.identities.prune()
        return delivered

    # ---------------- internal ----------------

    def _loop(self):
        while self.running:
            try:
                self.hints.get(timeout=self.interval)
            except queue.Empty:
                pass

            # collapse a burst of hints into one cycle
            while True:
                try:
                    self.hints.get_nowait()
                except queue.Empty:
                    break

            if not self.running:
                break
            try:
                self.run_once()
            except Exception:
                log.exception("poll cycle failed")
