"""Feed document retrieval + parsing.

Policy:
- Only http(s) feed URLs on public hosts are fetched (SSRF/abuse protections).
- Transport timeouts bound a hung upstream; there is no separate poll timeout.
- Any failure here is feed-level and propagates to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import io
import ipaddress
import logging
from urllib.parse import urlparse

import feedparser
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from feedpulse.errors import FeedFetchError, FeedParseError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchOptions:
    user_agent: str = "FeedPulse/1.0"
    connect_timeout: float = 5.0
    read_timeout: float = 25.0
    max_bytes: int = 5_000_000
    retries: int = 2
    allow_private_hosts: bool = False


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def validate_feed_url(url: str, *, allow_private_hosts: bool = False) -> Optional[str]:
    """Return an error code if the feed URL must not be fetched, else None."""
    if not url:
        return "empty_url"
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if allow_private_hosts:
        return None
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


class _TransientFetchError(Exception):
    pass


def fetch_feed_document(url: str, options: Optional[FetchOptions] = None) -> bytes:
    """Download a feed document, retrying transient network failures.

    Raises FeedFetchError for blocked URLs, HTTP errors, oversize bodies
    and network failures that outlast the retry budget.
    """
    opts = options or FetchOptions()
    err = validate_feed_url(url, allow_private_hosts=opts.allow_private_hosts)
    if err:
        raise FeedFetchError(f"refusing to fetch {url!r}: {err}")

    @retry(
        retry=retry_if_exception_type(_TransientFetchError),
        stop=stop_after_attempt(max(1, opts.retries + 1)),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        reraise=True,
    )
    def _get() -> bytes:
        try:
            resp = requests.get(
                url,
                headers={
                    "User-Agent": opts.user_agent,
                    "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
                },
                timeout=(opts.connect_timeout, opts.read_timeout),
                allow_redirects=True,
                stream=True,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise _TransientFetchError(str(e)) from e
        except requests.RequestException as e:
            raise FeedFetchError(f"request failed for {url}: {e}") from e

        with resp:
            status_code = resp.status_code
            if status_code >= 500:
                raise _TransientFetchError(f"http_{status_code}")
            if status_code >= 400:
                raise FeedFetchError(f"http_{status_code} fetching {url}")
            # Size guardrail: read up to max_bytes
            content = b""
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if not chunk:
                    continue
                content += chunk
                if len(content) > opts.max_bytes:
                    raise FeedFetchError(f"feed document too large: {url}")
        return content

    try:
        return _get()
    except _TransientFetchError as e:
        raise FeedFetchError(f"failed to fetch {url}: {e}") from e


def parse_feed_document(content: Any) -> Any:
    """Parse RSS or Atom content (bytes or str) with feedparser.

    feedparser is lenient: a document with recoverable problems still
    yields entries and is accepted. A document that is flagged malformed
    and produced nothing usable is a feed-level failure.
    """
    if content is None or (isinstance(content, (bytes, str)) and not content.strip()):
        raise FeedParseError("empty feed document")
    if isinstance(content, str):
        content = content.encode("utf-8")
    # A stream is never mistaken for a URL or file path by feedparser.
    parsed = feedparser.parse(io.BytesIO(content))
    entries = parsed.get("entries") or []
    if parsed.get("bozo") and not entries:
        exc = parsed.get("bozo_exception")
        raise FeedParseError(f"unparsable feed document: {exc}")
    if not entries and not parsed.get("feed") and not parsed.get("version"):
        raise FeedParseError("document is not a recognized feed")
    return parsed
