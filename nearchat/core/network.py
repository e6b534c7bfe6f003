# nearchat/core/network.py

import socket

import psutil


def list_ipv4_interfaces():
    """
    Returns a list of (interface_name, ipv4_address)
    """
    interfaces = []

    for name, addrs in psutil.net_if_addrs().items():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                interfaces.append((name, addr.address))

    return interfaces


def default_interface_ip() -> str:
    """
    First non-loopback IPv4 address whose interface is up,
    falling back to loopback.
    """
    stats = psutil.net_if_stats()

    for name, ip in list_ipv4_interfaces():
        if ip.startswith("127."):
            continue
        if name in stats and not stats[name].isup:
            continue
        return ip

    return "127.0.0.1"
