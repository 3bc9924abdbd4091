"""
Brief: Tests for httprecord.plugins.resolve.http_records.HttpRecords covering
configuration, table construction, lookups and reply rendering.

Inputs:
  - None directly; HTTP is faked by monkeypatching requests.get in the fetcher
    module.

Outputs:
  - None
"""

import ipaddress

import pytest
from dnslib import QTYPE, RCODE, DNSRecord
from requests.structures import CaseInsensitiveDict

import httprecord.backend.fetcher as fetcher_mod
from httprecord.backend.fetcher import UpstreamNotFound
from httprecord.plugins.resolve.base import PluginContext
from httprecord.plugins.resolve.http_records import (
    HttpRecords,
    HttpRecordsConfig,
    LookupKind,
    Record,
    Zone,
    build_tables,
    parse_duration,
)
from httprecord.backend.response_parsers import RecordType

TXT_ENDPOINT = "https://api.test/txt/%(fqdn)"
ZONE_ENDPOINT = "https://api.test/zone/%(fqdn)"


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None):
        self.status_code = status_code
        self._body = body if isinstance(body, bytes) else body.encode()
        self.headers = CaseInsensitiveDict(headers or {})

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self._body), chunk_size):
            yield self._body[i : i + chunk_size]

    def close(self):
        pass


@pytest.fixture
def http(monkeypatch):
    """Brief: Route fake HTTP responses by exact URI.

    Inputs:
      - monkeypatch: pytest fixture.

    Outputs:
      - dict mapping URI -> FakeResponse; a 'calls' list records requested URIs.
    """

    routes = {"calls": []}

    def _get(uri, **kwargs):
        routes["calls"].append(uri)
        resp = routes.get(uri)
        if resp is None:
            return FakeResponse(404)
        return resp

    monkeypatch.setattr(fetcher_mod.requests, "get", _get)
    return routes


def _make_query(name: str, qtype: str) -> bytes:
    return DNSRecord.question(name, qtype=qtype).pack()


def _resolve(plugin, name: str, qtype: str):
    """Run pre_resolve for name/qtype and return (decision, parsed reply or None)."""
    decision = plugin.pre_resolve(
        name, getattr(QTYPE, qtype), _make_query(name, qtype), PluginContext("127.0.0.1")
    )
    if decision is None:
        return None, None
    return decision, DNSRecord.parse(decision.response)


def test_parse_duration_variants():
    """
    Brief: parse_duration accepts numbers and Go-style duration strings.

    Inputs:
      - None

    Outputs:
      - None
    """
    assert parse_duration(None) == 0.0
    assert parse_duration(3) == 3.0
    assert parse_duration("2.5") == 2.5
    assert parse_duration("5s") == 5.0
    assert parse_duration("1500ms") == 1.5
    assert parse_duration("1m30s") == 90.0
    for bad in ("fast", "5 s", "-1", True):
        with pytest.raises(ValueError):
            parse_duration(bad)


def test_config_rejects_unsupported_type_and_bad_endpoint():
    with pytest.raises(ValueError):
        HttpRecordsConfig(records=[{"type": "MX", "name": "a.test."}], endpoint=TXT_ENDPOINT)
    with pytest.raises(ValueError):
        HttpRecordsConfig(endpoint="ftp://files.test/%(fqdn)")
    with pytest.raises(ValueError):
        HttpRecordsConfig(onerror="ignore")


def test_config_normalizes_fallthrough_and_timeout():
    assert HttpRecordsConfig().fallthrough is None
    assert HttpRecordsConfig(fallthrough=True).fallthrough == []
    assert HttpRecordsConfig(fallthrough="example.org").fallthrough == ["example.org"]
    assert HttpRecordsConfig(timeout="250ms").timeout == 0.25
    assert HttpRecordsConfig().cache_size == 100


def test_build_tables_expands_origins_and_relative_names():
    """
    Brief: Each origin becomes a zone; relative record names expand per origin.

    Inputs:
      - origins: two origins
      - records: one relative, one absolute

    Outputs:
      - None
    """
    cfg = HttpRecordsConfig(
        origins=["Example.com", "example.org."],
        endpoint=ZONE_ENDPOINT,
        zones=[{"origin": "static.test", "endpoint": TXT_ENDPOINT}],
        records=[
            {"type": "txt", "name": "motd"},
            {"type": "A", "name": "Host.Other.Test.", "endpoint": TXT_ENDPOINT},
        ],
    )
    records, zones = build_tables(cfg)
    assert zones == [
        Zone("example.com.", ZONE_ENDPOINT),
        Zone("example.org.", ZONE_ENDPOINT),
        Zone("static.test.", TXT_ENDPOINT),
    ]
    assert records == [
        Record("motd.example.com.", RecordType.TXT, ZONE_ENDPOINT),
        Record("motd.example.org.", RecordType.TXT, ZONE_ENDPOINT),
        Record("host.other.test.", RecordType.A, TXT_ENDPOINT),
    ]


def test_build_tables_requires_an_endpoint_and_origins_for_relative_names():
    with pytest.raises(ValueError, match="no endpoint"):
        build_tables(HttpRecordsConfig(records=[{"type": "TXT", "name": "a.test."}]))
    with pytest.raises(ValueError, match="requires at least one origin"):
        build_tables(
            HttpRecordsConfig(
                records=[{"type": "TXT", "name": "motd", "endpoint": TXT_ENDPOINT}]
            )
        )


def test_txt_record_answer_with_default_ttl(http):
    """
    Brief: A body of 'Hello' yields one authoritative TXT answer at TTL 3600.

    Inputs:
      - http: fake route for example.com.

    Outputs:
      - None
    """
    http[TXT_ENDPOINT.replace("%(fqdn)", "example.com.")] = FakeResponse(200, "Hello")
    plugin = HttpRecords(
        records=[{"type": "TXT", "name": "example.com.", "endpoint": TXT_ENDPOINT}]
    )

    decision, reply = _resolve(plugin, "Example.COM", "TXT")
    assert decision.action == "override"
    assert reply.header.rcode == RCODE.NOERROR
    assert reply.header.aa == 1
    assert reply.header.ra == 1
    assert len(reply.rr) == 1
    rr = reply.rr[0]
    assert rr.rtype == QTYPE.TXT
    assert rr.ttl == 3600
    assert rr.rdata.data == [b"Hello"]
    assert http["calls"] == ["https://api.test/txt/example.com."]


def test_zone_answers_a_for_names_below_origin(http):
    http["https://api.test/zone/foo.example.com."] = FakeResponse(200, "A 1.2.3.4")
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)

    _, reply = _resolve(plugin, "foo.example.com", "A")
    assert [str(rr.rdata) for rr in reply.rr] == ["1.2.3.4"]
    assert reply.rr[0].ttl == 3600
    assert str(reply.rr[0].rname) == "foo.example.com."


def test_aaaa_line_ttl_and_header_cap(http):
    """
    Brief: A per-line TTL lowers the base TTL, and a Cache-Control max-age caps it.

    Inputs:
      - http: two zone routes

    Outputs:
      - None
    """
    http["https://api.test/zone/v6.example.com."] = FakeResponse(200, "AAAA 1800 ::1")
    http["https://api.test/zone/capped.example.com."] = FakeResponse(
        200, "TXT 3600 hi", {"Cache-Control": "public, max-age: 1800"}
    )
    plugin = HttpRecords(zones=[{"origin": "example.com", "endpoint": ZONE_ENDPOINT}])

    _, reply = _resolve(plugin, "v6.example.com", "AAAA")
    assert len(reply.rr) == 1
    assert ipaddress.ip_address(str(reply.rr[0].rdata)) == ipaddress.ip_address("::1")
    assert reply.rr[0].ttl == 1800

    _, reply = _resolve(plugin, "capped.example.com", "TXT")
    assert reply.rr[0].ttl == 1800


def test_matched_zone_with_no_matching_lines_is_empty_noerror(http):
    http["https://api.test/zone/txtonly.example.com."] = FakeResponse(200, "just text")
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)
    _, reply = _resolve(plugin, "txtonly.example.com", "A")
    assert reply.header.rcode == RCODE.NOERROR
    assert reply.rr == []


def test_404_maps_to_nxdomain_without_cache(http):
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)
    decision, reply = _resolve(plugin, "gone.example.com", "TXT")
    assert decision.action == "override"
    assert reply.header.rcode == RCODE.NXDOMAIN
    assert reply.header.aa == 0
    assert reply.rr == []


def test_404_served_from_fallback_cache_when_cached(http):
    """
    Brief: With onerror=cached, a failure after a success answers the cached payload.

    Inputs:
      - http: route switched from 200 to 404

    Outputs:
      - None
    """
    uri = "https://api.test/zone/flaky.example.com."
    http[uri] = FakeResponse(200, "Hello")
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT, onerror="cached")
    assert plugin.cache is not None

    _, first = _resolve(plugin, "flaky.example.com", "TXT")
    http[uri] = FakeResponse(404)
    _, second = _resolve(plugin, "flaky.example.com", "TXT")

    assert second.header.rcode == RCODE.NOERROR
    assert [rr.rdata.data for rr in second.rr] == [rr.rdata.data for rr in first.rr]


def test_cached_mode_without_entry_still_fails(http):
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT, onerror="cached")
    with pytest.raises(UpstreamNotFound):
        plugin.lookup("never.example.com.", QTYPE.TXT)


def test_server_error_and_oversized_body_map_to_servfail(http):
    http["https://api.test/zone/err.example.com."] = FakeResponse(503)
    http["https://api.test/zone/big.example.com."] = FakeResponse(200, b"x" * 4096)
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)

    _, reply = _resolve(plugin, "err.example.com", "TXT")
    assert reply.header.rcode == RCODE.SERVFAIL
    _, reply = _resolve(plugin, "big.example.com", "TXT")
    assert reply.header.rcode == RCODE.SERVFAIL


def test_unsupported_type_is_nodata_without_fallthrough(http):
    """
    Brief: An MX query for a configured name answers NOERROR with no records.

    Inputs:
      - None

    Outputs:
      - None: Asserts no HTTP request was made
    """
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)
    decision, reply = _resolve(plugin, "foo.example.com", "MX")
    assert decision.action == "override"
    assert reply.header.rcode == RCODE.NOERROR
    assert reply.header.aa == 1
    assert reply.rr == []
    assert http["calls"] == []


def test_fallthrough_passes_unanswerable_queries_on(http):
    plugin = HttpRecords(
        origins=["example.com."], endpoint=ZONE_ENDPOINT, fallthrough=[]
    )
    assert _resolve(plugin, "foo.example.com", "MX") == (None, None)
    assert _resolve(plugin, "elsewhere.org", "A") == (None, None)
    assert plugin.lookup("elsewhere.org", QTYPE.A).kind is LookupKind.FALLTHROUGH


def test_fallthrough_limited_to_listed_zones(http):
    plugin = HttpRecords(
        origins=["example.com."], endpoint=ZONE_ENDPOINT, fallthrough=["other.org"]
    )
    assert plugin.lookup("a.other.org.", QTYPE.A).kind is LookupKind.FALLTHROUGH
    assert plugin.lookup("a.unrelated.net.", QTYPE.A).kind is LookupKind.NODATA


def test_exact_record_takes_precedence_over_zone(http):
    http["https://api.test/txt/motd.example.com."] = FakeResponse(200, "from record")
    http["https://api.test/zone/motd.example.com."] = FakeResponse(200, "from zone")
    plugin = HttpRecords(
        origins=["example.com."],
        endpoint=ZONE_ENDPOINT,
        records=[{"type": "TXT", "name": "motd", "endpoint": TXT_ENDPOINT}],
    )
    result = plugin.lookup("motd.example.com.", QTYPE.TXT)
    assert result.kind is LookupKind.ANSWER
    assert result.records[0].rdata.data == [b"from record"]


def test_duplicate_zone_uses_first_configured_endpoint(http):
    http["https://one.test/a.example.com."] = FakeResponse(200, "first")
    http["https://two.test/a.example.com."] = FakeResponse(200, "second")
    plugin = HttpRecords(
        zones=[
            {"origin": "example.com.", "endpoint": "https://one.test/%(fqdn)"},
            {"origin": "example.com.", "endpoint": "https://two.test/%(fqdn)"},
        ]
    )
    result = plugin.lookup("a.example.com.", QTYPE.TXT)
    assert result.records[0].rdata.data == [b"first"]


def test_longest_zone_wins(http):
    http["https://outer.test/x.sub.example.com."] = FakeResponse(200, "outer")
    http["https://inner.test/x.sub.example.com."] = FakeResponse(200, "inner")
    plugin = HttpRecords(
        zones=[
            {"origin": "example.com.", "endpoint": "https://outer.test/%(fqdn)"},
            {"origin": "sub.example.com.", "endpoint": "https://inner.test/%(fqdn)"},
        ]
    )
    result = plugin.lookup("x.sub.example.com.", QTYPE.TXT)
    assert result.records[0].rdata.data == [b"inner"]


def test_second_zone_uses_its_own_endpoint(http):
    http["https://first.test/www.example.org."] = FakeResponse(200, "wrong zone")
    http["https://second.test/www.example.org."] = FakeResponse(200, "org zone")
    plugin = HttpRecords(
        zones=[
            {"origin": "example.com.", "endpoint": "https://first.test/%(fqdn)"},
            {"origin": "example.org.", "endpoint": "https://second.test/%(fqdn)"},
        ]
    )
    result = plugin.lookup("www.example.org.", QTYPE.TXT)
    assert result.records[0].rdata.data == [b"org zone"]
    assert http["calls"] == ["https://second.test/www.example.org."]


def test_custom_placeholder(http):
    http["https://api.test/lookup?n=a.example.com."] = FakeResponse(200, "10.0.0.1")
    plugin = HttpRecords(
        origins=["example.com."],
        endpoint="https://api.test/lookup?n={name}",
        placeholder="{name}",
    )
    result = plugin.lookup("a.example.com.", QTYPE.A)
    assert [str(rr.rdata) for rr in result.records] == ["10.0.0.1"]


def test_reply_keeps_request_id_and_question(http):
    http["https://api.test/zone/id.example.com."] = FakeResponse(200, "ok")
    plugin = HttpRecords(origins=["example.com."], endpoint=ZONE_ENDPOINT)
    q = DNSRecord.question("id.example.com", "TXT")
    decision = plugin.pre_resolve(
        "id.example.com.", QTYPE.TXT, q.pack(), PluginContext("127.0.0.1")
    )
    reply = DNSRecord.parse(decision.response)
    assert reply.header.id == q.header.id
    assert str(reply.q.qname) == "id.example.com."
    assert decision.plugin_label == plugin.name
