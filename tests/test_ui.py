import pytest

from nearchat.core.sensing import GeoSource
from nearchat.ui.server import UIServer


@pytest.fixture
def ui(pair, clock):
    a, _ = pair
    geo = GeoSource(a.fusion.push, clock=clock)
    server = UIServer(
        identities=a.identities,
        fusion=a.fusion,
        coordinator=a.coordinator,
        geo=geo,
    )
    server.app.config["TESTING"] = True
    return server


@pytest.fixture
def client(ui):
    return ui.app.test_client()


def test_state_lists_me_and_nearby(client, pair):
    a, b = pair
    data = client.get("/api/state").get_json()

    assert data["me"]["id"] == a.me().token
    [peer] = data["nearby"]
    assert peer["id"] == b.me().token
    assert peer["confidence"] == "medium"
    assert peer["sources"] == ["radio"]
    assert data["messages"] == []


def test_send_and_receive_through_ui(client, ui, pair):
    a, b = pair
    resp = client.post("/api/send", json={"to": b.me().token, "text": "hello"})

    assert resp.status_code == 200
    assert resp.get_json()["state"] == "submitted"
    assert b.coordinator.poll() == ["hello"]

    ui.on_message(b.me().token, "back at you")
    messages = client.get("/api/state?after=1").get_json()["messages"]
    assert [(m["direction"], m["text"]) for m in messages] == [("in", "back at you")]


def test_send_validation_and_not_nearby(client):
    assert client.post("/api/send", json={"text": "x"}).status_code == 400
    assert client.post("/api/send", json={"to": "abc"}).status_code == 400

    resp = client.post("/api/send", json={"to": "0" * 32, "text": "x"})
    assert resp.status_code == 409


def test_send_with_expired_identity(client, pair, clock):
    _, b = pair
    clock.advance(61)
    resp = client.post("/api/send", json={"to": b.me().token, "text": "x"})
    assert resp.status_code == 410


def test_rotate(client, pair):
    a, _ = pair
    old = a.me().token
    data = client.post("/api/rotate").get_json()

    assert data["ok"]
    assert data["me"]["id"] != old
    assert a.me().token == data["me"]["id"]


def test_geo_fixes(client, pair, clock):
    a, _ = pair
    assert client.post("/api/geo", json={"lat": "x"}).status_code == 400
    assert client.post("/api/geo", json={"lat": 91, "lon": 0}).status_code == 400
    assert client.post("/api/geo", json={"lat": 0.0, "lon": 0.0}).status_code == 200

    peer = {"id": "c" * 32, "created": clock.now, "exp": clock.now + 60}
    near = client.post("/api/geo", json=dict(peer, lat=0.0005, lon=0.0)).get_json()
    assert near["in_range"]
    far = client.post("/api/geo", json=dict(peer, lat=1.0, lon=0.0)).get_json()
    assert not far["in_range"]

    tokens = {entry.token for entry in a.fusion.snapshot()}
    assert "c" * 32 in tokens
