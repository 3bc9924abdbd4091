from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Tuple, Union
from urllib.parse import urlparse

from dnslib import RR, DNSHeader, DNSRecord
from pydantic import BaseModel, Field, validator

from httprecord.backend.fallback_cache import (
    DEFAULT_CACHE_SIZE,
    CachingFetcher,
    FallbackCache,
)
from httprecord.backend.fetcher import (
    DEFAULT_PLACEHOLDER,
    DecodeError,
    FetchResult,
    HttpFetcher,
    HttpRecordError,
)
from httprecord.backend.response_parsers import DECODERS, RecordType
from httprecord.plugins.resolve.base import (
    BasePlugin,
    PluginContext,
    PluginDecision,
    plugin_aliases,
)
from httprecord.utils.zones import (
    Fallthrough,
    is_fqdn,
    match_zone,
    normalize_fqdn,
    qualify,
)

logger = logging.getLogger(__name__)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[None, int, float, str]) -> float:
    """Brief: Convert a timeout setting into seconds.

    Inputs:
      - value: None, a number of seconds, or a duration string such as
        "5s", "1500ms" or "1m30s".

    Outputs:
      - float: Seconds (0.0 when unset).

    Raises:
      - ValueError: For negative or unparsable values.

    Example:
      >>> parse_duration("1m30s")
      90.0
      >>> parse_duration("250ms")
      0.25
    """

    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"unable to parse timeout: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            return 0.0
        try:
            seconds = float(text)
        except ValueError:
            seconds = 0.0
            pos = 0
            for match in _DURATION_PART.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos == 0 or pos != len(text):
                raise ValueError(f"unable to parse timeout: {value!r}") from None
    if seconds < 0:
        raise ValueError(f"timeout must not be negative: {value!r}")
    return seconds


def _check_endpoint(value: object) -> str:
    text = str(value or "").strip()
    if urlparse(text).scheme.lower() not in {"http", "https"}:
        raise ValueError(f"endpoint must be an http(s) URI template, got {value!r}")
    return text


class HttpRecordEntry(BaseModel):
    """Brief: One configured record: type, owner name and optional endpoint.

    Inputs:
      - type: TXT, A or AAAA (case-insensitive).
      - name: FQDN (trailing dot) or a name relative to every origin.
      - endpoint: URI template; defaults to the plugin-level endpoint.
    """

    type: str
    name: str
    endpoint: Optional[str] = None

    @validator("type", pre=True)
    def _normalize_type(cls, v: object) -> str:  # type: ignore[override]
        return RecordType.parse(v).value

    @validator("name", pre=True)
    def _normalize_name(cls, v: object) -> str:  # type: ignore[override]
        text = str(v or "").strip().lower()
        if not text:
            raise ValueError("record name must be a non-empty string")
        return text

    @validator("endpoint", pre=True)
    def _normalize_endpoint(cls, v: object) -> Optional[str]:  # type: ignore[override]
        return None if v is None else _check_endpoint(v)


class HttpZoneEntry(BaseModel):
    """A zone origin answered from a single endpoint template."""

    origin: str
    endpoint: str

    @validator("endpoint", pre=True)
    def _normalize_endpoint(cls, v: object) -> str:  # type: ignore[override]
        return _check_endpoint(v)


class HttpRecordsConfig(BaseModel):
    """Brief: Typed configuration model for HttpRecords.

    Inputs:
      - origins: Origins used to qualify relative record names. When
        endpoint is also set, each origin is served as a zone.
      - endpoint: Plugin-level URI template.
      - zones: Explicit {origin, endpoint} zones.
      - records: Explicit {type, name, endpoint} records.
      - onerror: "servfail" (default) or "cached" to answer from the last
        good payload when a fetch fails.
      - cache_size: Capacity of the fallback cache (default 100).
      - timeout: Request timeout as seconds or duration string; unset or 0
        means 5 seconds.
      - max_ttl: Ceiling for response-derived TTLs (0 disables).
      - fallthrough: None disables; [] passes every unanswerable name on;
        otherwise only names under the listed zones.
      - placeholder: Token in endpoint templates replaced by the query name.

    Outputs:
      - HttpRecordsConfig instance with normalized field types.
    """

    origins: List[str] = Field(default_factory=list)
    endpoint: Optional[str] = None
    zones: List[HttpZoneEntry] = Field(default_factory=list)
    records: List[HttpRecordEntry] = Field(default_factory=list)
    onerror: Literal["servfail", "cached"] = Field(default="servfail")
    cache_size: int = Field(default=DEFAULT_CACHE_SIZE, ge=1)
    timeout: float = Field(default=0.0, ge=0)
    max_ttl: int = Field(default=0, ge=0, le=0xFFFFFFFF)
    fallthrough: Optional[List[str]] = None
    placeholder: str = Field(default=DEFAULT_PLACEHOLDER, min_length=1)

    class Config:
        extra = "allow"

    @validator("endpoint", pre=True)
    def _normalize_endpoint(cls, v: object) -> Optional[str]:  # type: ignore[override]
        return None if v is None else _check_endpoint(v)

    @validator("onerror", pre=True)
    def _normalize_onerror(cls, v: object) -> str:  # type: ignore[override]
        text = str(v or "servfail").strip().lower()
        if text not in {"servfail", "cached"}:
            raise ValueError(
                "unknown value for onerror. Expected one of: servfail, cached"
            )
        return text

    @validator("timeout", pre=True)
    def _parse_timeout(cls, v: object) -> float:  # type: ignore[override]
        return parse_duration(v)  # type: ignore[arg-type]

    @validator("fallthrough", pre=True)
    def _normalize_fallthrough(cls, v: object) -> Optional[List[str]]:  # type: ignore[override]
        if v is None or v is False:
            return None
        if v is True:
            return []
        if isinstance(v, str):
            return [v]
        return [str(z) for z in v]  # type: ignore[union-attr]


@dataclass(frozen=True)
class Record:
    """An exact (name, type) entry answered from endpoint."""

    name: str
    rtype: RecordType
    endpoint: str


@dataclass(frozen=True)
class Zone:
    """Every name at or below origin is answered from endpoint."""

    origin: str
    endpoint: str


class LookupKind(enum.Enum):
    ANSWER = "answer"
    NODATA = "nodata"
    FALLTHROUGH = "fallthrough"


@dataclass
class LookupResult:
    kind: LookupKind
    records: List[RR] = field(default_factory=list)


def build_tables(cfg: HttpRecordsConfig) -> Tuple[List[Record], List[Zone]]:
    """Brief: Expand a validated config into ordered record and zone tables.

    Inputs:
      - cfg: HttpRecordsConfig instance.

    Outputs:
      - (records, zones) in configuration order.

    Raises:
      - ValueError: When a record has no endpoint, or a relative record name
        is configured without origins.
    """

    origins = [normalize_fqdn(o) for o in cfg.origins]

    zones: List[Zone] = []
    if cfg.endpoint:
        zones.extend(Zone(origin=o, endpoint=cfg.endpoint) for o in origins)
    for entry in cfg.zones:
        zones.append(Zone(origin=normalize_fqdn(entry.origin), endpoint=entry.endpoint))

    records: List[Record] = []
    for entry in cfg.records:
        endpoint = entry.endpoint or cfg.endpoint
        if not endpoint:
            raise ValueError(
                f"record {entry.type} {entry.name} has no endpoint and no "
                "plugin-level endpoint is configured"
            )
        rtype = RecordType.parse(entry.type)
        if is_fqdn(entry.name):
            records.append(Record(normalize_fqdn(entry.name), rtype, endpoint))
            continue
        if not origins:
            raise ValueError(
                f"relative record name {entry.name!r} requires at least one origin"
            )
        for origin in origins:
            records.append(Record(qualify(entry.name, origin), rtype, endpoint))

    return records, zones


@plugin_aliases("http_records", "httprecord", "http")
class HttpRecords(BasePlugin):
    """
    Answer TXT, A and AAAA queries with records fetched from HTTP endpoints.

    Inputs (config): see HttpRecordsConfig.

    Outputs:
      - pre_resolve() answers exact records and names inside configured zones
        authoritatively, renders endpoint failures as NXDOMAIN/SERVFAIL, and
        either passes other names to the next handler (fallthrough) or
        answers them with NODATA.

    Example usage:
        plugins:
          - module: http_records
            config:
              origins: [example.com.]
              endpoint: https://records.internal/lookup?name=%(fqdn)
              onerror: cached
              timeout: 2s
              records:
                - {type: TXT, name: motd}
              fallthrough: []
    """

    @classmethod
    def get_config_model(cls):
        return HttpRecordsConfig

    def __init__(self, **config):
        super().__init__(**config)
        settings = HttpRecordsConfig(**self.config)
        self.settings = settings

        self.records, self.zones = build_tables(settings)

        # Read-only indexes; setdefault keeps the first configured entry.
        self._record_index: Dict[Tuple[str, RecordType], Record] = {}
        for record in self.records:
            self._record_index.setdefault((record.name, record.rtype), record)
        self._zone_index: Dict[str, Zone] = {}
        for zone in self.zones:
            self._zone_index.setdefault(zone.origin, zone)

        self.fallthrough = Fallthrough(settings.fallthrough)

        self.fetcher = HttpFetcher(
            timeout=settings.timeout,
            max_ttl=settings.max_ttl,
            placeholder=settings.placeholder,
        )
        self.cache: Optional[FallbackCache] = None
        if settings.onerror == "cached":
            self.cache = FallbackCache(maxsize=settings.cache_size)
            self.fetcher = CachingFetcher(self.fetcher, self.cache)

        logger.debug(
            "HttpRecords %s: %d record(s), %d zone(s), onerror=%s",
            self.name,
            len(self.records),
            len(self.zones),
            settings.onerror,
        )

    def lookup(self, qname: str, qtype: int) -> LookupResult:
        """Brief: Resolve one query against the record and zone tables.

        Inputs:
          - qname: Query name (any case, trailing dot optional).
          - qtype: Numeric DNS query type.

        Outputs:
          - LookupResult with kind ANSWER (possibly empty records), NODATA or
            FALLTHROUGH.

        Raises:
          - HttpRecordError: Fetch or decode failure for a matched record or
            zone. Failures are never swallowed here.
        """

        name = normalize_fqdn(qname)
        rtype = RecordType.from_qtype(qtype)
        self.logger.debug(
            "Lookup type %s for %s", self.qtype_name(int(qtype)), name
        )

        if rtype is None:
            return self._unanswered(name)

        record = self._record_index.get((name, rtype))
        if record is not None:
            return self._answer(rtype, name, record.endpoint)

        origin = match_zone(self._zone_index.keys(), name)
        if origin is not None:
            self.logger.debug("Found matching zone: %s", origin)
            return self._answer(rtype, name, self._zone_index[origin].endpoint)

        return self._unanswered(name)

    def _unanswered(self, name: str) -> LookupResult:
        if self.fallthrough.through(name):
            return LookupResult(LookupKind.FALLTHROUGH)
        return LookupResult(LookupKind.NODATA)

    def _answer(self, rtype: RecordType, name: str, endpoint: str) -> LookupResult:
        result: FetchResult = self.fetcher.fetch(name, endpoint)
        decoder = DECODERS.get(rtype)
        if decoder is None:
            raise DecodeError(f"unable to find response parser for: {rtype.value}")
        return LookupResult(
            LookupKind.ANSWER, decoder(name, result.ttl, result.payload)
        )

    @staticmethod
    def _reply(request: DNSRecord, *, authoritative: bool = True) -> DNSRecord:
        return DNSRecord(
            DNSHeader(id=request.header.id, qr=1, aa=int(authoritative), ra=1),
            q=request.q,
        )

    def pre_resolve(
        self, qname: str, qtype: int, req: bytes, ctx: PluginContext
    ) -> Optional[PluginDecision]:
        """Brief: Answer the query from HTTP endpoints when it is ours.

        Inputs:
          - qname: Queried domain name.
          - qtype: DNS record type (numeric code).
          - req: Raw DNS request bytes.
          - ctx: Plugin context.

        Outputs:
          - PluginDecision("override") carrying the answer, a NODATA reply or
            a failure reply with the mapped rcode; None when the query falls
            through to the next handler.
        """

        try:
            request = DNSRecord.parse(req)
        except Exception as e:  # pragma: no cover - malformed request
            self.logger.warning("HttpRecords parse failure: %s", e)
            return None

        name = normalize_fqdn(request.q.qname)
        try:
            result = self.lookup(name, qtype)
        except HttpRecordError as exc:
            self.logger.warning(
                "HttpRecords lookup %s %s failed: %s",
                name,
                self.qtype_name(int(qtype)),
                exc,
            )
            reply = self._reply(request, authoritative=False)
            reply.header.rcode = exc.rcode
            return PluginDecision(
                action="override", response=reply.pack(), plugin_label=self.name
            )

        if result.kind is LookupKind.FALLTHROUGH:
            return None

        reply = self._reply(request)
        for rr in result.records:
            reply.add_answer(rr)
        return PluginDecision(
            action="override", response=reply.pack(), plugin_label=self.name
        )
