"""Single DNS-over-UDP exchange with an upstream resolver."""

import socket

# Largest reply accepted from an upstream without EDNS.
MAX_REPLY_SIZE = 4096


class UDPError(Exception):
    """The upstream could not be reached or did not answer in time."""


def udp_query(host: str, port: int, query: bytes, *, timeout_ms: int = 2000) -> bytes:
    """
    Brief: Send query to host:port and return the first reply carrying its id.

    Inputs:
    - host: upstream resolver name or address (IPv4 or IPv6)
    - port: upstream UDP port
    - query: wire-format DNS query
    - timeout_ms: time allowed for the whole exchange

    Outputs:
    - bytes: wire-format reply

    Raises:
    - UDPError: resolution, socket failure or timeout
    """
    try:
        family, _, _, _, address = socket.getaddrinfo(
            host, int(port), type=socket.SOCK_DGRAM
        )[0]
    except OSError as e:
        raise UDPError(f"cannot resolve upstream {host}: {e}") from e

    with socket.socket(family, socket.SOCK_DGRAM) as sock:
        sock.settimeout(max(int(timeout_ms), 1) / 1000.0)
        try:
            sock.connect(address)
            sock.send(query)
            while True:
                reply = sock.recv(MAX_REPLY_SIZE)
                # Stray datagrams with another id are ignored.
                if reply[:2] == query[:2]:
                    return reply
        except socket.timeout as e:
            raise UDPError(f"upstream {host}:{port} timed out after {timeout_ms}ms") from e
        except OSError as e:
            raise UDPError(f"upstream {host}:{port} failed: {e}") from e
