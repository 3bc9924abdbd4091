from __future__ import annotations

from typing import Iterable, List, Optional


def normalize_fqdn(name: object) -> str:
    """Brief: Lower-case a domain name and ensure a single trailing dot.

    Inputs:
      - name: Domain name (string or dnslib DNSLabel).

    Outputs:
      - str: FQDN such as 'www.example.com.'; the root zone is '.'.

    Example:
      >>> normalize_fqdn("WWW.Example.com")
      'www.example.com.'
    """

    text = str(name).strip().lower().rstrip(".")
    return text + "." if text else "."


def is_fqdn(name: str) -> bool:
    return str(name).endswith(".")


def qualify(name: str, origin: str) -> str:
    """Append origin to a relative name; FQDNs are returned normalized."""
    if is_fqdn(name):
        return normalize_fqdn(name)
    origin = normalize_fqdn(origin)
    if origin == ".":
        return normalize_fqdn(name)
    return normalize_fqdn(f"{name}.{origin}")


def in_zone(name: str, origin: str) -> bool:
    """Brief: Report whether name equals origin or sits below it on a label boundary.

    Inputs:
      - name: Normalized FQDN.
      - origin: Normalized FQDN of the zone.

    Outputs:
      - bool

    Example:
      >>> in_zone("foo.example.com.", "example.com.")
      True
      >>> in_zone("badexample.com.", "example.com.")
      False
    """

    if origin == ".":
        return True
    return name == origin or name.endswith("." + origin)


def match_zone(origins: Iterable[str], name: str) -> Optional[str]:
    """Brief: Find the longest origin that contains name.

    Inputs:
      - origins: Normalized zone origins.
      - name: Normalized query name.

    Outputs:
      - The matching origin, or None. Among equally long matches the first
        one wins.
    """

    best: Optional[str] = None
    for origin in origins:
        if in_zone(name, origin) and (best is None or len(origin) > len(best)):
            best = origin
    return best


class Fallthrough:
    """Brief: Set of zones for which unanswerable queries go to the next handler.

    Inputs:
      - zones: None disables fallthrough entirely; an empty sequence means
        every name; otherwise only names inside the listed zones.

    Outputs:
      - Fallthrough instance.

    Example use:
        >>> Fallthrough([]).through("anything.test.")
        True
        >>> Fallthrough(["example.org"]).through("example.com.")
        False
    """

    def __init__(self, zones: Optional[Iterable[str]] = None) -> None:
        self.zones: List[str] = []
        if zones is None:
            return
        self.zones = [normalize_fqdn(z) for z in zones] or ["."]

    def __bool__(self) -> bool:
        return bool(self.zones)

    def through(self, name: str) -> bool:
        return match_zone(self.zones, normalize_fqdn(name)) is not None
