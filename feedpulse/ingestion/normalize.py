"""Normalize parsed RSS/Atom entries into CandidateItem records.

feedparser already folds both dialects into one superset entry schema
(``content`` / ``summary``, ``author`` for dc:creator, ``tags`` for
categories, ``enclosures`` and ``media_*`` for attachments), so a single
pass handles either dialect. One bad entry never fails the feed: it is
recorded as an error string and skipped.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import re
from typing import Any, List, Mapping, Optional

from bs4 import BeautifulSoup

from feedpulse.ingestion.article_types import CandidateItem, NormalizedFeed, Source


logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
SUMMARY_MAX_LENGTH = 200

# Full-width stops always end a sentence; Latin ones only before whitespace or end of text.
_SENTENCE_END_RE = re.compile(r"[。！？]|[.!?](?=\s|$)")


def strip_markup(html: Optional[str]) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator=" ")
    return " ".join(text.split())


def extract_summary(content: Optional[str], max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """Plain-text summary of ``content`` bounded by ``max_length``.

    Cuts after the last sentence terminator inside the bound; without one,
    hard-truncates and appends ``...``.
    """
    text = strip_markup(content)
    if len(text) <= max_length:
        return text.strip()

    truncated = text[:max_length]
    last_end = 0
    for m in _SENTENCE_END_RE.finditer(truncated):
        last_end = m.end()
    if last_end > 1:
        return truncated[:last_end].strip()
    return truncated.strip() + "..."


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _first_img_src(html: Optional[str]) -> Optional[str]:
    if not html or "<img" not in html.lower():
        return None
    soup = BeautifulSoup(html, "html.parser")
    for img in soup.find_all("img"):
        src = (img.get("src") or "").strip()
        if src:
            return src
    return None


def _long_form(entry: Any) -> str:
    content = _get(entry, "content") or []
    for block in content:
        value = _get(block, "value")
        if value:
            return str(value)
    return str(_get(entry, "summary") or "")


def extract_image_url(entry: Any) -> Optional[str]:
    """Best-effort image for an entry.

    Order: image enclosure, media:content, media:thumbnail, first <img> in
    the long-form content.
    """
    for enc in _get(entry, "enclosures") or []:
        href = _get(enc, "href") or _get(enc, "url")
        enc_type = str(_get(enc, "type") or "")
        if href and enc_type.startswith("image/"):
            return str(href)

    for media in _get(entry, "media_content") or []:
        url = _get(media, "url")
        if not url:
            continue
        medium = str(_get(media, "medium") or "")
        media_type = str(_get(media, "type") or "")
        # media:content also carries video/audio; untyped entries are assumed images
        if medium in ("", "image") and (not media_type or media_type.startswith("image/")):
            return str(url)

    for thumb in _get(entry, "media_thumbnail") or []:
        url = _get(thumb, "url")
        if url:
            return str(url)

    return _first_img_src(_long_form(entry))


def _published_at(entry: Any, fallback: datetime) -> datetime:
    for key in ("published_parsed", "updated_parsed"):
        st = _get(entry, key)
        if st:
            try:
                return datetime(*st[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return fallback


def _tags(entry: Any) -> List[str]:
    out: List[str] = []
    for tag in _get(entry, "tags") or []:
        term = _get(tag, "term")
        if isinstance(term, str) and term.strip():
            out.append(term.strip())
    return out


def normalize_entry(
    entry: Any,
    *,
    feed_title: Optional[str],
    source: Source,
    fetched_at: datetime,
) -> CandidateItem:
    link = str(_get(entry, "link") or "").strip()
    if not link:
        raise ValueError(f"Item without link: {_get(entry, 'title') or UNTITLED}")

    title = str(_get(entry, "title") or "").strip() or UNTITLED
    content = _long_form(entry)

    # feedparser copies content into summary when the entry has no short form of its own.
    short_form = _get(entry, "summary") if _get(entry, "content") else None
    summary = strip_markup(short_form) if short_form else ""
    if summary and summary == strip_markup(content):
        summary = ""
    if not summary:
        summary = extract_summary(content)

    author = str(_get(entry, "author") or "").strip() or feed_title or source.name

    return CandidateItem(
        title=title,
        url=link,
        content=content,
        summary=summary,
        published_at=_published_at(entry, fetched_at),
        image_url=extract_image_url(entry),
        author=author,
        tags=_tags(entry),
    )


def normalize_feed(parsed: Any, source: Source, *, fetched_at: Optional[datetime] = None) -> NormalizedFeed:
    """Normalize every entry of a parsed feed, isolating per-item failures.

    ``fetched_count`` always equals ``len(items) + len(errors)``.
    """
    now = fetched_at or datetime.now(timezone.utc)
    feed_meta = _get(parsed, "feed") or {}
    feed_title = str(_get(feed_meta, "title") or "").strip() or None

    items: List[CandidateItem] = []
    errors: List[str] = []
    entries = _get(parsed, "entries") or []
    for entry in entries:
        try:
            items.append(normalize_entry(entry, feed_title=feed_title, source=source, fetched_at=now))
        except ValueError as e:
            errors.append(str(e))
        except Exception as e:
            logger.warning(f"[ingest] could not normalize item from {source.name}: {e}")
            errors.append(f"Failed to normalize item: {e}")

    return NormalizedFeed(items=items, errors=errors, fetched_count=len(entries), feed_title=feed_title)
