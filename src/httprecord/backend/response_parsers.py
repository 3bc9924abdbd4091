"""Turn endpoint response bodies into typed resource records.

Brief:
  An endpoint answers with plain text, one record per line::

      [TYPE [TTL]] DATA

  parse_lines() splits a body into RecordLine values and decode() hands them
  to the decoder for the requested record type (TXT, A or AAAA).

Inputs:
  - Response body text, query name and the base TTL of the fetch.

Outputs:
  - Lists of dnslib RR instances in source line order.
"""

from __future__ import annotations

import enum
import ipaddress
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from dnslib import AAAA, QTYPE, RR, TXT, A

logger = logging.getLogger(__name__)

# dnslib refuses character-strings longer than this.
_TXT_CHUNK = 255


class RecordType(str, enum.Enum):
    """Record types this package knows how to answer."""

    TXT = "TXT"
    A = "A"
    AAAA = "AAAA"

    @property
    def qtype(self) -> int:
        return int(getattr(QTYPE, self.value))

    @classmethod
    def parse(cls, value: object) -> "RecordType":
        """Brief: Map a type keyword (any case) to a RecordType.

        Inputs:
          - value: Keyword such as "txt" or "AAAA".

        Outputs:
          - RecordType member.

        Raises:
          - ValueError: When the keyword is not TXT, A or AAAA.
        """

        text = str(value).strip().upper()
        try:
            return cls(text)
        except ValueError:
            raise ValueError(f"unsupported record type: {value!r}") from None

    @classmethod
    def from_qtype(cls, qtype: int) -> Optional["RecordType"]:
        """Return the RecordType for a numeric qtype, or None when unsupported."""
        name = QTYPE.get(int(qtype), None)
        if name is None:
            return None
        try:
            return cls(str(name).upper())
        except ValueError:
            return None


def is_type_keyword(token: str) -> bool:
    """Brief: Report whether a token names any DNS record type.

    Inputs:
      - token: Candidate keyword, compared case-insensitively.

    Outputs:
      - bool: True for known mnemonics such as "A", "mx" or "TXT".
    """

    return token.upper() in QTYPE.reverse


@dataclass(frozen=True)
class RecordLine:
    """One non-blank line of an endpoint response.

    Inputs (constructor fields):
      - explicit_type: Uppercase type keyword when the line starts with one.
      - explicit_ttl: Per-line TTL in seconds, only ever set together with
        explicit_type.
      - payload: Record data.
    """

    explicit_type: Optional[str]
    explicit_ttl: Optional[int]
    payload: str

    @classmethod
    def parse(cls, line: str) -> "RecordLine":
        """Brief: Split one trimmed line into type, TTL and payload.

        Inputs:
          - line: Trimmed, non-empty line of response text.

        Outputs:
          - RecordLine instance.

        Example:
          >>> RecordLine.parse("AAAA 1800 ::1")
          RecordLine(explicit_type='AAAA', explicit_ttl=1800, payload='::1')
          >>> RecordLine.parse("hello world").payload
          'hello world'
        """

        tokens = line.split()
        if len(tokens) < 2 or not is_type_keyword(tokens[0]):
            return cls(explicit_type=None, explicit_ttl=None, payload=line)

        explicit_type = tokens[0].upper()
        rest = tokens[1:]
        explicit_ttl: Optional[int] = None
        if len(rest) > 1 and rest[0].isascii() and rest[0].isdigit():
            explicit_ttl = int(rest[0])
            rest = rest[1:]

        return cls(
            explicit_type=explicit_type,
            explicit_ttl=explicit_ttl,
            payload=" ".join(rest),
        )

    def effective_ttl(self, base_ttl: int) -> int:
        """A per-line TTL may only lower the base TTL of the fetch."""
        ttl = self.explicit_ttl
        if not ttl or ttl > base_ttl:
            return base_ttl
        return ttl


def parse_lines(body: str) -> List[RecordLine]:
    """Brief: Split a response body into RecordLine values, skipping blank lines.

    Inputs:
      - body: Full response text.

    Outputs:
      - list[RecordLine] in source order.
    """

    lines: List[RecordLine] = []
    for raw in body.split("\n"):
        line = raw.strip()
        if not line:
            continue
        lines.append(RecordLine.parse(line))
    return lines


def _ip_or_none(text: str):
    text = text.strip()
    # Zoned literals (fe80::1%eth0) have no wire form.
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _as_ipv4(addr) -> Optional[ipaddress.IPv4Address]:
    """Return the IPv4 form of addr, including IPv4-mapped IPv6 addresses."""
    if isinstance(addr, ipaddress.IPv4Address):
        return addr
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return None


def _txt_chunks(payload: str) -> List[bytes]:
    data = payload.encode("utf-8")
    if not data:
        return [b""]
    return [data[i : i + _TXT_CHUNK] for i in range(0, len(data), _TXT_CHUNK)]


def decode_txt(name: str, base_ttl: int, body: str) -> List[RR]:
    """Brief: Build TXT records from every untyped or TXT-typed line.

    Inputs:
      - name: Owner name for the records (FQDN).
      - base_ttl: TTL established for the fetch.
      - body: Response text.

    Outputs:
      - list[RR]: One TXT record per included line, payload used verbatim.
    """

    rrs: List[RR] = []
    for line in parse_lines(body):
        if line.explicit_type not in (None, RecordType.TXT.value):
            continue
        rrs.append(
            RR(
                rname=name,
                rtype=QTYPE.TXT,
                rclass=1,
                ttl=line.effective_ttl(base_ttl),
                rdata=TXT(_txt_chunks(line.payload)),
            )
        )
    return rrs


def decode_a(name: str, base_ttl: int, body: str) -> List[RR]:
    """Brief: Build A records from A-typed lines and untyped IPv4 lines.

    Inputs:
      - name: Owner name for the records (FQDN).
      - base_ttl: TTL established for the fetch.
      - body: Response text.

    Outputs:
      - list[RR]: A records; lines whose payload is not an IPv4 address are
        dropped.
    """

    rrs: List[RR] = []
    for line in parse_lines(body):
        if line.explicit_type not in (None, RecordType.A.value):
            continue
        addr = _ip_or_none(line.payload)
        v4 = _as_ipv4(addr) if addr is not None else None
        # An A record only carries IPv4, even when the line is typed A.
        if v4 is None:
            continue
        rrs.append(
            RR(
                rname=name,
                rtype=QTYPE.A,
                rclass=1,
                ttl=line.effective_ttl(base_ttl),
                rdata=A(str(v4)),
            )
        )
    return rrs


def decode_aaaa(name: str, base_ttl: int, body: str) -> List[RR]:
    """Brief: Build AAAA records from AAAA-typed lines and untyped IPv6 lines.

    Inputs:
      - name: Owner name for the records (FQDN).
      - base_ttl: TTL established for the fetch.
      - body: Response text.

    Outputs:
      - list[RR]: AAAA records. Untyped lines that are expressible as IPv4
        belong to the A decoder and are skipped; an explicit AAAA line with an
        IPv4 payload is answered with its IPv4-mapped form.
    """

    rrs: List[RR] = []
    for line in parse_lines(body):
        if line.explicit_type not in (None, RecordType.AAAA.value):
            continue
        addr = _ip_or_none(line.payload)
        if addr is None:
            continue
        if line.explicit_type is None and _as_ipv4(addr) is not None:
            continue
        if isinstance(addr, ipaddress.IPv4Address):
            addr = ipaddress.IPv6Address(f"::ffff:{addr}")
        rrs.append(
            RR(
                rname=name,
                rtype=QTYPE.AAAA,
                rclass=1,
                ttl=line.effective_ttl(base_ttl),
                rdata=AAAA(str(addr)),
            )
        )
    return rrs


DECODERS: Dict[RecordType, Callable[[str, int, str], List[RR]]] = {
    RecordType.TXT: decode_txt,
    RecordType.A: decode_a,
    RecordType.AAAA: decode_aaaa,
}


def decode(rtype: RecordType, name: str, base_ttl: int, body: str) -> List[RR]:
    """Brief: Dispatch a response body to the decoder for rtype.

    Inputs:
      - rtype: Requested RecordType.
      - name: Owner name (FQDN).
      - base_ttl: TTL established for the fetch.
      - body: Response text.

    Outputs:
      - list[RR]: Possibly empty list of records.

    Raises:
      - KeyError: When rtype has no decoder.
    """

    rrs = DECODERS[rtype](name, base_ttl, body)
    logger.debug("decoded %d %s record(s) for %s", len(rrs), rtype.value, name)
    return rrs
