# nearchat/cli/commands.py

import time

from nearchat.core.errors import IdentityExpired, NotNearbyError, RelayError


def print_menu(identities, ui_url, current_ip):
    identity = identities.current()
    name = identity.short() if identity else "(none)"
    print("\n=== NearChat ===")
    print(f"You: {name}")
    print(f"Interface: {current_ip}")
    print(f"UI: {ui_url}")
    print("Commands: /menu /help /logs /nearby /send /rotate /whoami /quit\n")


def print_help():
    print(
        "\nCommands:\n"
        "  /nearby                List identities near you\n"
        "  /send <id> <message>   Send an ephemeral message to a nearby id\n"
        "  /rotate                Switch to a fresh identity\n"
        "  /whoami                Show your current identity\n"
        "  /logs                  Show recent logs\n"
        "  /menu                  Show the main menu\n"
        "  /help                  Show this help\n"
        "  /quit                  Exit\n"
    )


def resolve_peer(fusion, ref: str):
    """
    Match `ref` (anon-xxxx or a token prefix) against the nearby set.
    Returns the full token, or None if absent or ambiguous.
    """
    ref = ref.strip()
    if ref.startswith("anon-"):
        ref = ref[len("anon-"):]
    if not ref:
        return None

    matches = [entry.token for entry in fusion.snapshot() if entry.token.startswith(ref)]
    if len(matches) != 1:
        return None
    return matches[0]


def show_nearby(fusion):
    entries = fusion.snapshot()
    if not entries:
        print("Nobody nearby.")
        return

    now = time.time()
    print("\nNearby:")
    for entry in entries:
        sources = ",".join(sorted(kind.value for kind in entry.sources))
        age = max(0.0, now - entry.last_seen_at)
        print(f"  {entry.identity.short():<15} {entry.confidence.name.lower():<7} {sources:<10} {age:4.0f}s ago")
    print()


def handle_command(line, identities, fusion, coordinator, logs=None, show_menu=None, identity_ttl=600.0):
    """
    Handle a single CLI command.
    Returns False if the app should exit.
    """
    if line in ("/quit", "/exit"):
        return False

    if line == "/menu":
        if show_menu:
            show_menu()
        else:
            print_help()
        return True

    if line == "/help":
        print_help()
        return True

    if line == "/logs":
        if not logs:
            print("No logs yet.")
            return True
        print("\nRecent logs:")
        for entry in logs:
            print(f"  {entry}")
        print()
        return True

    if line == "/nearby":
        show_nearby(fusion)
        return True

    if line == "/whoami":
        identity = identities.current()
        if identity is None:
            print("No identity.")
        else:
            left = max(0, int(identity.expires_at - time.time()))
            print(f"{identity.short()} (expires in {left}s)")
        return True

    if line == "/rotate":
        identity = identities.current()
        try:
            fresh = identities.rotate(identity) if identity else identities.issue(identity_ttl)
        except IdentityExpired:
            fresh = identities.issue(identity_ttl)
        print(f"Now {fresh.short()}.")
        return True

    if line.startswith("/send "):
        parts = line.split(maxsplit=2)
        if len(parts) < 3:
            print("Usage: /send <id> <message>")
            return True

        _, ref, msg = parts
        token = resolve_peer(fusion, ref)
        if token is None:
            print(f"Not nearby: {ref}")
            return True

        try:
            coordinator.submit(token, msg)
            print(f"Sent to anon-{token[:8]}.")
        except NotNearbyError:
            print(f"Not nearby: {ref}")
        except IdentityExpired:
            print("Your identity expired. Use /rotate.")
        except RelayError:
            print("Undelivered (relay unreachable).")
        except ValueError as exc:
            print(f"Not sent: {exc}")
        return True

    print("Unknown command. Type /help.")
    return True
