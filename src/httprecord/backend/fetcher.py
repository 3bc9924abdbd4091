"""Bounded HTTP fetches of record payloads.

Brief:
  HttpFetcher issues a single GET per lookup against an endpoint URI template,
  reads at most MAX_BODY_SIZE bytes, derives the base TTL from the
  Cache-Control header and maps HTTP failures onto DNS response codes.

Inputs:
  - Query name and endpoint URI template.

Outputs:
  - FetchResult on success; HttpRecordError subclasses on failure.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Mapping, Optional

import requests
from dnslib import RCODE

logger = logging.getLogger(__name__)

MAX_BODY_SIZE = 4096
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_TTL = 3600
DEFAULT_PLACEHOLDER = "%(fqdn)"

_MAX_UINT32 = 0xFFFFFFFF
# A sized read blocks until it is filled, so the body is read byte by byte to
# check the deadline as data trickles in. Bodies are capped at MAX_BODY_SIZE.
_READ_CHUNK = 1
_CACHE_CONTROL_MAX_AGE = re.compile(r"max-age:\s*(\d+)")


class HttpRecordError(Exception):
    """Base class for lookup failures; rendered as SERVFAIL unless overridden."""

    rcode: int = RCODE.SERVFAIL


class FetchError(HttpRecordError):
    """Generic fetch failure: network error, timeout, oversized body or an
    unexpected HTTP status."""


class DecodeError(HttpRecordError):
    """No decoder exists for the requested record type."""


class BackendIndicatedError(HttpRecordError):
    """Brief: Failure signalled by the endpoint through its HTTP status.

    Inputs:
      - http_status: Status code returned by the endpoint.
      - rcode: DNS response code the status maps to.

    Outputs:
      - Exception instance carrying both codes.
    """

    def __init__(self, http_status: int, rcode: int) -> None:
        self.http_status = int(http_status)
        self.rcode = int(rcode)
        super().__init__(
            f"dns error: {RCODE.get(self.rcode, self.rcode)} "
            f"from http error {self.http_status}"
        )


class UpstreamNotFound(BackendIndicatedError):
    def __init__(self, http_status: int = 404) -> None:
        super().__init__(http_status, RCODE.NXDOMAIN)


class UpstreamServerError(BackendIndicatedError):
    def __init__(self, http_status: int) -> None:
        super().__init__(http_status, RCODE.SERVFAIL)


@dataclass(frozen=True)
class FetchResult:
    """Successful fetch: response text and the base TTL derived for it."""

    payload: str
    ttl: int


def resolve_endpoint(
    template: str, name: str, placeholder: str = DEFAULT_PLACEHOLDER
) -> str:
    """Brief: Substitute the query name into an endpoint URI template.

    Inputs:
      - template: URI containing zero or more placeholder occurrences.
      - name: Query name, including its trailing dot.
      - placeholder: Literal token to replace (case-sensitive).

    Outputs:
      - str: Concrete URI.

    Example:
      >>> resolve_endpoint("https://api.test/txt/%(fqdn)", "example.com.")
      'https://api.test/txt/example.com.'
    """

    return template.replace(placeholder, name)


class HttpFetcher:
    """Brief: Perform one bounded GET per lookup and classify the outcome.

    Inputs (constructor):
      - timeout: Overall request timeout in seconds. None or 0 selects
        DEFAULT_TIMEOUT_SECONDS so no request can hang indefinitely.
      - max_ttl: Optional TTL ceiling in seconds (0 disables).
      - placeholder: Endpoint template token replaced with the query name.

    Outputs:
      - HttpFetcher instance.

    Example use:
        >>> fetcher = HttpFetcher(timeout=2.0)
        >>> fetcher.fetch("example.com.", "https://api.test/%(fqdn)")  # doctest: +SKIP
        FetchResult(payload='Hello', ttl=3600)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_ttl: int = 0,
        placeholder: str = DEFAULT_PLACEHOLDER,
    ) -> None:
        self.timeout = float(timeout) if timeout else DEFAULT_TIMEOUT_SECONDS
        self.max_ttl = max(0, int(max_ttl or 0))
        self.placeholder = placeholder

    def extract_ttl(self, headers: Mapping[str, str]) -> int:
        """Brief: Derive the base TTL for a response from its Cache-Control header.

        Inputs:
          - headers: Response headers (case-insensitive mapping).

        Outputs:
          - int: max-age when positive and below max_ttl, else max_ttl when
            configured, else DEFAULT_TTL. An unparsable header only logs a
            warning.
        """

        cache_control = headers.get("Cache-Control") or ""
        candidate = 0
        match = _CACHE_CONTROL_MAX_AGE.search(cache_control)
        if match is not None:
            value = int(match.group(1))
            if value <= _MAX_UINT32:
                candidate = value
        if cache_control and candidate == 0:
            logger.warning("Unable to parse Cache-Control header: %s", cache_control)

        if candidate > 0 and (self.max_ttl == 0 or candidate < self.max_ttl):
            return candidate
        if self.max_ttl > 0:
            return self.max_ttl
        return DEFAULT_TTL

    def _read_bounded(self, response: requests.Response, deadline: float) -> bytes:
        body = bytearray()
        for chunk in response.iter_content(chunk_size=_READ_CHUNK):
            if time.monotonic() > deadline:
                raise FetchError(f"timeout after {self.timeout}s reading response")
            if not chunk:
                continue
            body.extend(chunk)
            if len(body) >= MAX_BODY_SIZE:
                return bytes(body[:MAX_BODY_SIZE])
        return bytes(body)

    def fetch(self, name: str, endpoint: str) -> FetchResult:
        """Brief: Fetch the payload for name from endpoint.

        Inputs:
          - name: Query name (FQDN, trailing dot).
          - endpoint: URI template for the record or zone.

        Outputs:
          - FetchResult(payload, ttl) for HTTP 200.

        Raises:
          - UpstreamNotFound: HTTP 404.
          - UpstreamServerError: HTTP status >= 500.
          - FetchError: Network failure, timeout, body reaching MAX_BODY_SIZE,
            or any other status.
        """

        uri = resolve_endpoint(endpoint, name, self.placeholder)
        logger.debug("Fetching: %s with a timeout of %ss", uri, self.timeout)

        # requests applies timeout per socket operation; deadline bounds the
        # whole exchange.
        deadline = time.monotonic() + self.timeout
        try:
            response = requests.get(uri, timeout=self.timeout, stream=True)
        except requests.RequestException as exc:
            raise FetchError(f"request to {uri} failed: {exc}") from exc

        try:
            body = self._read_bounded(response, deadline)
        except requests.RequestException as exc:
            raise FetchError(f"reading response from {uri} failed: {exc}") from exc
        finally:
            response.close()

        if len(body) >= MAX_BODY_SIZE:
            raise FetchError(
                f"backend returned a body longer than {MAX_BODY_SIZE - 1} bytes"
            )

        ttl = self.extract_ttl(response.headers)
        status = int(response.status_code)

        if status == 200:
            return FetchResult(payload=body.decode("utf-8", errors="replace"), ttl=ttl)
        if status == 404:
            raise UpstreamNotFound(status)
        if status >= 500:
            raise UpstreamServerError(status)
        raise FetchError(f"unexpected status code: {status}")
