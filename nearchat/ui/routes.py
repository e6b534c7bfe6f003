from flask import jsonify, request

from nearchat.core.errors import IdentityExpired, NotNearbyError, RelayError
from nearchat.core.identity import TemporaryIdentity


def configure_routes(app, ui):
    @app.errorhandler(NotNearbyError)
    def handle_not_nearby(err):
        return jsonify({"error": str(err) or "Not nearby"}), 409

    @app.errorhandler(IdentityExpired)
    def handle_expired(err):
        return jsonify({"error": str(err) or "Identity expired"}), 410

    @app.errorhandler(RelayError)
    def handle_relay(_err):
        return jsonify({"error": "Undelivered (relay unreachable)"}), 503

    @app.get("/api/state")
    def api_state():
        try:
            after_id = int(request.args.get("after", "0"))
        except ValueError:
            after_id = 0

        messages = ui.messages.serialize_messages(
            ui.messages.messages_since(after_id)
        )

        return jsonify(
            {
                "me": ui.serialize_me(),
                "nearby": ui.serialize_nearby(),
                "messages": messages,
                "interface": {
                    "current": ui.current_ip,
                },
            }
        )

    @app.post("/api/send")
    def api_send():
        payload = request.get_json(silent=True) or {}
        to = str(payload.get("to") or "").strip()
        text = str(payload.get("text") or "").strip()

        if not to:
            return jsonify({"error": "Missing recipient"}), 400
        if not text:
            return jsonify({"error": "Message is empty"}), 400

        try:
            sent = ui.coordinator.submit(to, text)
        except ValueError as exc:
            return jsonify({"error": str(exc)}), 400

        ui.messages.store("out", to, text)
        return jsonify({"ok": True, "message_id": sent.message_id, "state": sent.state.value})

    @app.post("/api/rotate")
    def api_rotate():
        current = ui.identities.current()
        if current is None:
            fresh = ui.identities.issue(ui.identity_ttl)
        else:
            fresh = ui.identities.rotate(current)
        ui.messages.clear()
        return jsonify({"ok": True, "me": {"id": fresh.token, "name": fresh.short()}})

    @app.post("/api/geo")
    def api_geo():
        """
        Own fix:  {"lat": .., "lon": ..}
        Peer fix: {"id": .., "created": .., "exp": .., "lat": .., "lon": ..}
        """
        if ui.geo is None:
            return jsonify({"error": "Geolocation not enabled"}), 501

        payload = request.get_json(silent=True) or {}
        try:
            lat = float(payload["lat"])
            lon = float(payload["lon"])
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": "lat and lon required"}), 400

        if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
            return jsonify({"error": "Coordinates out of range"}), 400

        token = payload.get("id")
        if token is None:
            ui.geo.set_own_fix(lat, lon)
            return jsonify({"ok": True})

        try:
            peer = TemporaryIdentity(
                token=str(token),
                created_at=float(payload["created"]),
                expires_at=float(payload["exp"]),
            )
        except (KeyError, TypeError, ValueError):
            return jsonify({"error": "Peer fix needs id, created and exp"}), 400

        sighting = ui.geo.report_fix(peer, lat, lon)
        return jsonify({"ok": True, "in_range": sighting is not None})
