"""
Brief: Tests for httprecord.servers.transports.udp.udp_query against local
UDP sockets.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading

import pytest
from dnslib import DNSRecord

from httprecord.servers.transports.udp import UDPError, udp_query


@pytest.fixture
def upstream():
    """
    Brief: Bound loopback UDP socket standing in for an upstream resolver.

    Inputs:
      - None

    Outputs:
      - socket.socket bound to an ephemeral port
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    try:
        yield sock
    finally:
        sock.close()


def test_udp_query_skips_replies_with_another_id(upstream):
    query = DNSRecord.question("example.com", "A")
    wire = query.pack()

    def answer():
        data, peer = upstream.recvfrom(512)
        stray = DNSRecord.parse(data).reply()
        stray.header.id = (query.header.id + 1) % 65536
        upstream.sendto(stray.pack(), peer)
        upstream.sendto(DNSRecord.parse(data).reply().pack(), peer)

    t = threading.Thread(target=answer, daemon=True)
    t.start()
    reply = DNSRecord.parse(udp_query("127.0.0.1", upstream.getsockname()[1], wire))
    t.join(timeout=2.0)
    assert reply.header.id == query.header.id
    assert reply.header.qr == 1


def test_udp_query_times_out(upstream):
    with pytest.raises(UDPError, match="timed out after 100ms"):
        udp_query(
            "127.0.0.1",
            upstream.getsockname()[1],
            DNSRecord.question("example.com").pack(),
            timeout_ms=100,
        )


def test_udp_query_unresolvable_host():
    with pytest.raises(UDPError, match="cannot resolve"):
        udp_query("no-such-host.invalid", 53, b"\x00\x01", timeout_ms=100)
