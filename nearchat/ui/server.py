from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from flask import Flask

from nearchat.ui.inbox import Inbox
from nearchat.ui.routes import configure_routes


class UIServer:
    """
    Thin Flask UI layer.
    - No transport
    - No crypto
    - No ownership of the nearby set
    """

    def __init__(
        self,
        identities,
        fusion,
        coordinator,
        geo=None,
        upstream_on_message: Optional[Callable] = None,
        identity_ttl: float = 600.0,
    ):
        self.identities = identities
        self.fusion = fusion
        self.coordinator = coordinator
        self.geo = geo
        self.upstream_on_message = upstream_on_message
        self.identity_ttl = identity_ttl

        self.current_ip: Optional[str] = None

        self._lock = threading.Lock()
        self.messages = Inbox(self._lock)

        self.app = Flask(__name__)
        configure_routes(self.app, self)

    # ---------------- lifecycle ----------------

    def run(self, host: str = "127.0.0.1", port: int = 5000):
        thread = threading.Thread(
            target=self.app.run,
            kwargs={
                "host": host,
                "port": port,
                "debug": False,
                "use_reloader": False,
                "threaded": True,
            },
            daemon=True,
        )
        thread.start()
        return thread

    def set_current_ip(self, ip: str):
        self.current_ip = ip
        return self

    # ---------------- views ----------------

    def serialize_me(self):
        identity = self.identities.current()
        if identity is None:
            return None
        return {
            "id": identity.token,
            "name": identity.short(),
            "expires_in": max(0.0, identity.expires_at - time.time()),
        }

    def serialize_nearby(self):
        return [
            {
                "id": entry.token,
                "name": entry.identity.short(),
                "confidence": entry.confidence.name.lower(),
                "sources": sorted(kind.value for kind in entry.sources),
                "last_seen": entry.last_seen_at,
            }
            for entry in self.fusion.snapshot()
        ]

    # ---------------- inbound hook ----------------

    def on_message(self, sender_id: str, message: str):
        """
        Hook passed to the poll loop. Receives opened inbound messages.
        """
        self.messages.store("in", sender_id, message)

        if self.upstream_on_message:
            self.upstream_on_message(sender_id, message)


def run_ui_server(
    identities,
    fusion,
    coordinator,
    geo=None,
    upstream_on_message: Optional[Callable] = None,
    host: str = "127.0.0.1",
    port: int = 5000,
    identity_ttl: float = 600.0,
) -> UIServer:
    """
    Convenience helper.
    """
    ui = UIServer(
        identities=identities,
        fusion=fusion,
        coordinator=coordinator,
        geo=geo,
        upstream_on_message=upstream_on_message,
        identity_ttl=identity_ttl,
    )
    ui.run(host=host, port=port)
    return ui
