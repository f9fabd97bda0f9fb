"""URL canonicalization helpers for ingestion/dedup."""

from __future__ import annotations

from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


DEFAULT_STRIP_QUERY_PARAMS = {
    # tracking
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "utm_name",
    "utm_reader",
    "utm_referrer",
    "utm_pubreferrer",
    "utm_swu",
    # misc common trackers
    "gclid",
    "fbclid",
    "mc_cid",
    "mc_eid",
    "ref_src",
    "ref_url",
}


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize an article link into its dedup key.

    - Lowercase scheme + hostname
    - Remove fragments
    - Strip common tracking query parameters
    - Sort remaining query params so ordering does not create new keys

    The path is kept as-is (including an empty one) so that links which
    are already canonical come back unchanged.
    """
    if not url:
        return ""
    strip = set(strip_params) if strip_params is not None else set(DEFAULT_STRIP_QUERY_PARAMS)
    p = urlparse(url.strip())
    if not p.netloc:
        # Relative or opaque link; nothing sensible to normalize.
        return url.strip()
    scheme = (p.scheme or "https").lower()
    netloc = p.netloc.lower()

    kept = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        if k.lower() in strip:
            continue
        kept.append((k, v))
    kept.sort(key=lambda kv: (kv[0].lower(), kv[1]))
    query = urlencode(kept, doseq=True)

    return urlunparse((scheme, netloc, p.path, p.params, query, ""))
