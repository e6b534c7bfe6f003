# nearchat/core/transport.py

import json
import socket


class Transport:
    """
    UDP datagram transport used as the short-range radio stand-in.

    Responsibilities:
    - Bind a UDP socket to one local interface
    - Send and receive JSON objects, one per datagram

    Non-responsibilities:
    - No presence logic
    - No threading
    """

    def __init__(self, port: int, bind_ip: str, broadcast: bool = True, timeout: float | None = 1.0):
        self.port = port
        self.bind_ip = bind_ip

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if broadcast:
            self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        # recv() wakes up periodically so loops can notice stop()
        self.sock.settimeout(timeout)

        self.sock.bind((self.bind_ip, self.port))

    def send(self, payload: dict, target_ip: str, target_port: int):
        data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        self.sock.sendto(data, (target_ip, target_port))

    def recv(self, bufsize: int = 4096):
        """
        Blocking receive (up to the socket timeout).

        Returns:
            payload (dict | None), sender_ip (str), sender_port (int)
            payload is None for datagrams that are not a JSON object.
        """
        data, (ip, port) = self.sock.recvfrom(bufsize)
        try:
            payload = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None, ip, port
        if not isinstance(payload, dict):
            return None, ip, port
        return payload, ip, port

    def close(self):
        self.sock.close()
