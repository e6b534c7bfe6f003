import logging

from nearchat.cli.commands import handle_command, print_menu
from nearchat.config.settings import Settings
from nearchat.core.discovery import Beacon
from nearchat.core.fusion import ProximityFusion
from nearchat.core.identity import IdentityManager
from nearchat.core.network import default_interface_ip
from nearchat.core.sensing import GeoSource
from nearchat.core.transport import Transport
from nearchat.messaging.exchange import ExchangeCoordinator
from nearchat.messaging.poller import PollLoop
from nearchat.relay.memory import MemoryRelay
from nearchat.runtime.logs import configure_logging
from nearchat.ui.server import run_ui_server

log = logging.getLogger(__name__)


def build_core(settings: Settings, relay=None):
    """
    Identity manager, fusion engine and coordinator, wired together.
    """
    identities = IdentityManager(grace_window=settings.grace_window)
    fusion = ProximityFusion(
        radio_decay=settings.radio_decay,
        geo_decay=settings.geo_decay,
        is_local=identities.owns,
    )
    coordinator = ExchangeCoordinator(
        identities=identities,
        fusion=fusion,
        relay=relay if relay is not None else MemoryRelay(),
        message_ttl=settings.message_ttl,
        relay_retries=settings.relay_retries,
        relay_backoff=settings.relay_backoff,
        relay_timeout=settings.relay_timeout,
    )
    return identities, fusion, coordinator


def main():
    settings = Settings.from_env()
    log_handler = configure_logging(settings.debug)

    # --- Core ---
    identities, fusion, coordinator = build_core(settings)
    identities.issue(settings.identity_ttl)
    geo = GeoSource(fusion.push, radius_m=settings.geo_radius)

    # --- Radio stand-in (UDP beacon on the chosen interface) ---
    bind_ip = settings.interface_ip or default_interface_ip()
    log.info("Using interface IP: %s", bind_ip)

    transport = Transport(port=settings.port, bind_ip=bind_ip, broadcast=True)
    beacon = Beacon(
        transport=transport,
        identities=identities,
        sink=fusion.push,
        broadcast_ip=settings.broadcast_ip,
        port=settings.port,
    )
    beacon.start()

    def current_ui_url():
        host_label = settings.ui_host
        if host_label == "0.0.0.0":
            host_label = bind_ip
        return f"http://{host_label}:{settings.ui_port}"

    def on_message(sender_id: str, message: str):
        print(f"\n[anon-{sender_id[:8]}] {message}")
        print("> ", end="", flush=True)

    # --- UI server (non-blocking) ---
    ui = run_ui_server(
        identities=identities,
        fusion=fusion,
        coordinator=coordinator,
        geo=geo,
        upstream_on_message=on_message,
        host=settings.ui_host,
        port=settings.ui_port,
        identity_ttl=settings.identity_ttl,
    )
    ui.set_current_ip(bind_ip)

    poller = PollLoop(coordinator, ui.on_message, interval=settings.poll_interval)
    poller.start()

    # --- CLI ---
    log.info("UI running at %s", current_ui_url())

    def show_menu():
        print_menu(identities, current_ui_url(), bind_ip)

    show_menu()

    try:
        while True:
            line = input("> ").strip()
            if not line:
                continue

            should_continue = handle_command(
                line=line,
                identities=identities,
                fusion=fusion,
                coordinator=coordinator,
                logs=log_handler.buffer,
                show_menu=show_menu,
                identity_ttl=settings.identity_ttl,
            )
            poller.hint()

            if not should_continue:
                break

    except (KeyboardInterrupt, EOFError):
        pass
    finally:
        print("\nExiting...")
        poller.stop()
        beacon.stop()
        transport.close()
        coordinator.close()


if __name__ == "__main__":
    main()
