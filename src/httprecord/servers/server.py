import logging
import socketserver
from typing import Dict, List, Optional, Tuple

from dnslib import QTYPE, RCODE, DNSRecord

from ..plugins.resolve.base import BasePlugin, PluginContext, PluginDecision
from .transports.udp import UDPError, udp_query

logger = logging.getLogger("httprecord.server")


def _set_response_id(wire: bytes, req_id: int) -> bytes:
    """Ensure the response DNS ID matches the request ID.

    Inputs:
      - wire: bytes-like DNS response.
      - req_id: int request ID to set in the first two bytes.

    Outputs:
      - bytes: response with corrected ID.

    The DNS ID is the first 2 bytes (big-endian); they are rewritten without
    re-parsing the message.
    """
    bwire = bytes(wire)
    if len(bwire) < 2:
        return bwire
    return int(req_id).to_bytes(2, "big") + bwire[2:]


def _servfail(request: DNSRecord) -> bytes:
    r = request.reply()
    r.header.rcode = RCODE.SERVFAIL
    return _set_response_id(r.pack(), request.header.id)


def send_query_with_failover(
    data: bytes,
    upstreams: List[Dict],
    timeout_ms: int,
    qname: str,
    qtype: int,
) -> Tuple[Optional[bytes], Optional[Dict], str]:
    """
    Sends a DNS query to a list of upstream servers, one at a time, until one
    answers.

    Args:
        data: Wire-format query.
        upstreams: A list of {'host', 'port'} dicts in failover order.
        timeout_ms: The timeout in milliseconds for each attempt.
        qname: The query name (for logging).
        qtype: The query type (for logging).

    Returns:
        A tuple of (response_wire_bytes, used_upstream, reason).
        reason is 'ok', 'no_upstreams', or 'all_failed'.
    """
    if not upstreams:
        return None, None, "no_upstreams"

    for upstream in upstreams:
        host = str(upstream.get("host", ""))
        port = int(upstream.get("port", 53))
        logger.debug("Forwarding %s type %s to %s:%d", qname, qtype, host, port)
        try:
            return udp_query(host, port, data, timeout_ms=timeout_ms), upstream, "ok"
        except UDPError as e:
            logger.warning("Upstream %s:%d failed for %s: %s", host, port, qname, e)
    return None, None, "all_failed"


def _apply_pre_plugins(
    plugins: List[BasePlugin], qname: str, qtype: int, data: bytes, ctx
) -> Optional[PluginDecision]:
    """
    Apply pre-resolve plugins in ascending pre_priority order.

    Inputs:
        - plugins: Loaded plugin instances.
        - qname (str): Query name.
        - qtype (int): DNS RR type.
        - data (bytes): Original query wire data.
        - ctx (PluginContext): Plugin context.

    Outputs:
        - decision (PluginDecision or None): The first override/drop decision,
          or None when every plugin passed the query on.

    Stable sort preserves registration order for equal priorities.
    """
    for p in sorted(plugins, key=lambda p: getattr(p, "pre_priority", 100)):
        if not p.targets_qtype(qtype):
            continue

        decision = p.pre_resolve(qname, qtype, data, ctx)
        if not isinstance(decision, PluginDecision):
            continue
        if decision.action == "override" and decision.response is not None:
            logger.debug("Override %s type %s by %s", qname, qtype, p.name)
            return decision
        if decision.action == "drop":
            logger.debug("Drop %s type %s by %s", qname, qtype, p.name)
            return decision
        logger.debug("Plugin %s: %s", p.name, decision.action)
    return None


def resolve_query_bytes(data: bytes, client_ip: str) -> bytes:
    """Resolve a single DNS wire query and return wire response.

    Inputs:
      - data: Wire-format DNS query bytes.
      - client_ip: String client IP for plugin context and logging.

    Outputs:
      - bytes: Wire-format DNS response, or b"" when a plugin asked for the
        query to be dropped.

    Plugins and upstreams come from DNSUDPHandler's class-level configuration.
    Unexpected errors anywhere in the pipeline become SERVFAIL.

    Example:
      >>> resp = resolve_query_bytes(query_bytes, '127.0.0.1')
    """
    request = DNSRecord.parse(data)
    qname = str(request.q.qname).rstrip(".") + "."
    qtype = request.q.qtype
    logger.debug(
        "Query from %s: %s %s", client_ip, qname, QTYPE.get(qtype, str(qtype))
    )

    try:
        ctx = PluginContext(client_ip=client_ip)
        ctx.qname = qname
        decision = _apply_pre_plugins(
            DNSUDPHandler.plugins, qname, qtype, data, ctx
        )
        if decision is not None:
            if decision.action == "drop":
                return b""
            return _set_response_id(decision.response, request.header.id)

        wire, _, reason = send_query_with_failover(
            data, DNSUDPHandler.upstream_addrs, DNSUDPHandler.timeout_ms, qname, qtype
        )
        if wire is None:
            logger.info("No upstream answer for %s (%s)", qname, reason)
            return _servfail(request)
        return _set_response_id(wire, request.header.id)
    except Exception:
        logger.exception("Error resolving %s", qname)
        return _servfail(request)


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests.
    This class is instantiated for each incoming DNS query.

    Example use:
        This handler is used internally by the DNSServer and is not
        typically instantiated directly by users.
    """

    upstream_addrs: List[Dict] = []
    plugins: List[BasePlugin] = []
    timeout_ms = 2000

    def handle(self):
        data, sock = self.request
        client_ip = self.client_address[0]

        try:
            wire = resolve_query_bytes(data, client_ip)
        except Exception as e:
            # Unparsable datagrams get no reply.
            logger.debug("Dropping malformed query from %s: %s", client_ip, e)
            return
        if not wire:
            return
        sock.sendto(wire, self.client_address)


class DNSServer:
    """A basic UDP DNS server wrapper.

    Example use:
        >>> import threading
        >>> server = DNSServer("127.0.0.1", 5355, [], [], timeout_ms=1000)
        >>> t = threading.Thread(target=server.serve_forever, daemon=True)
        >>> t.start()
        >>> server.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        upstreams: List[Dict],
        plugins: List[BasePlugin],
        timeout_ms: int = 2000,
    ) -> None:
        """Initialize a UDP DNSServer.

        Inputs:
            host: The host to listen on.
            port: The port to listen on.
            upstreams: A list of upstream DNS server configurations.
            plugins: A list of initialized plugins.
            timeout_ms: The timeout for upstream queries (milliseconds).
        """
        DNSUDPHandler.upstream_addrs = list(upstreams)
        DNSUDPHandler.plugins = list(plugins)
        DNSUDPHandler.timeout_ms = int(timeout_ms)
        try:
            self.server = socketserver.ThreadingUDPServer((host, port), DNSUDPHandler)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                host,
                port,
                e,
            )
            raise

        # Ensure request handler threads do not block shutdown
        self.server.daemon_threads = True
        logger.debug("DNS UDP server bound to %s:%d", host, port)

    @property
    def address(self) -> Tuple[str, int]:
        return self.server.server_address[:2]

    def serve_forever(self) -> None:
        """Start the UDP server loop; returns after stop() or KeyboardInterrupt."""
        try:
            self.server.serve_forever()
        except KeyboardInterrupt:  # pragma: no cover - interactive
            pass

    def stop(self) -> None:
        """Request graceful shutdown and close the underlying UDP socket."""
        try:
            self.server.shutdown()
        finally:
            self.server.server_close()
