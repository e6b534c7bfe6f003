# nearchat/config/settings.py

import os


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Settings:
    """
    Centralized runtime settings.
    Override via NEARCHAT_* environment variables.
    """

    def __init__(
        self,
        interface_ip: str | None = None,
        port: int = 54545,
        broadcast_ip: str = "255.255.255.255",
        ui_host: str = "127.0.0.1",
        ui_port: int = 5000,
        identity_ttl: float = 600.0,
        grace_window: float = 5.0,
        radio_decay: float = 10.0,
        geo_decay: float = 60.0,
        geo_radius: float = 150.0,
        message_ttl: float = 120.0,
        relay_retries: int = 3,
        relay_backoff: float = 0.2,
        relay_timeout: float = 5.0,
        poll_interval: float = 2.0,
        debug: bool = False,
    ):
        self.interface_ip = interface_ip
        self.port = port
        self.broadcast_ip = broadcast_ip
        self.ui_host = ui_host
        self.ui_port = ui_port
        self.identity_ttl = identity_ttl
        self.grace_window = grace_window
        self.radio_decay = radio_decay
        self.geo_decay = geo_decay
        self.geo_radius = geo_radius
        self.message_ttl = message_ttl
        self.relay_retries = relay_retries
        self.relay_backoff = relay_backoff
        self.relay_timeout = relay_timeout
        self.poll_interval = poll_interval
        self.debug = debug

    @classmethod
    def from_env(cls):
        return cls(
            interface_ip=os.getenv("NEARCHAT_INTERFACE_IP"),
            port=_int("NEARCHAT_PORT", 54545),
            broadcast_ip=os.getenv("NEARCHAT_BROADCAST_IP", "255.255.255.255"),
            ui_host=os.getenv("NEARCHAT_UI_HOST", "127.0.0.1"),
            ui_port=_int("NEARCHAT_UI_PORT", 5000),
            identity_ttl=_float("NEARCHAT_IDENTITY_TTL", 600.0),
            grace_window=_float("NEARCHAT_GRACE_WINDOW", 5.0),
            radio_decay=_float("NEARCHAT_RADIO_DECAY", 10.0),
            geo_decay=_float("NEARCHAT_GEO_DECAY", 60.0),
            geo_radius=_float("NEARCHAT_GEO_RADIUS", 150.0),
            message_ttl=_float("NEARCHAT_MESSAGE_TTL", 120.0),
            relay_retries=_int("NEARCHAT_RELAY_RETRIES", 3),
            relay_backoff=_float("NEARCHAT_RELAY_BACKOFF", 0.2),
            relay_timeout=_float("NEARCHAT_RELAY_TIMEOUT", 5.0),
            poll_interval=_float("NEARCHAT_POLL_INTERVAL", 2.0),
            debug=os.getenv("NEARCHAT_DEBUG") == "1",
        )
