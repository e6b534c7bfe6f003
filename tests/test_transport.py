from types import SimpleNamespace
import socket

from nearchat.core import network
from nearchat.core.transport import Transport


def test_json_datagram_loopback():
    transport = Transport(port=0, bind_ip="127.0.0.1", broadcast=False, timeout=2.0)
    try:
        port = transport.sock.getsockname()[1]
        transport.send({"t": "GM", "id": "x"}, "127.0.0.1", port)
        payload, ip, _ = transport.recv()
    finally:
        transport.close()

    assert payload == {"t": "GM", "id": "x"}
    assert ip == "127.0.0.1"


def test_non_json_datagram_yields_none():
    transport = Transport(port=0, bind_ip="127.0.0.1", broadcast=False, timeout=2.0)
    try:
        port = transport.sock.getsockname()[1]
        transport.sock.sendto(b"\xff not json", ("127.0.0.1", port))
        payload, _, _ = transport.recv()
    finally:
        transport.close()

    assert payload is None


def test_default_interface_skips_loopback_and_down(monkeypatch):
    addrs = {
        "lo": [SimpleNamespace(family=socket.AF_INET, address="127.0.0.1")],
        "eth0": [SimpleNamespace(family=socket.AF_INET, address="10.0.0.5")],
        "wlan0": [SimpleNamespace(family=socket.AF_INET, address="192.168.1.9")],
    }
    stats = {
        "lo": SimpleNamespace(isup=True),
        "eth0": SimpleNamespace(isup=False),
        "wlan0": SimpleNamespace(isup=True),
    }
    monkeypatch.setattr(network.psutil, "net_if_addrs", lambda: addrs)
    monkeypatch.setattr(network.psutil, "net_if_stats", lambda: stats)

    assert network.list_ipv4_interfaces()[0] == ("lo", "127.0.0.1")
    assert network.default_interface_ip() == "192.168.1.9"


def test_default_interface_falls_back_to_loopback(monkeypatch):
    monkeypatch.setattr(network.psutil, "net_if_addrs", lambda: {})
    monkeypatch.setattr(network.psutil, "net_if_stats", lambda: {})

    assert network.default_interface_ip() == "127.0.0.1"
