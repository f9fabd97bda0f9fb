"""In-process source registry and article store.

Same contract as the Postgres implementations, including the URL
uniqueness check inside ``create_article``. Used by tests and for local
runs without a database.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
import threading
import uuid
from typing import Dict, Iterable, List, Optional

from feedpulse.errors import DuplicateArticleError, SourceNotFoundError
from feedpulse.ingestion.article_types import Article, CandidateItem, Source


class InMemorySourceRegistry:
    def __init__(self, sources: Optional[Iterable[Source]] = None):
        self._lock = threading.Lock()
        self._sources: Dict[str, Source] = {s.id: s for s in (sources or [])}

    def add(self, source: Source) -> None:
        with self._lock:
            self._sources[source.id] = source

    def list_active_sources(self) -> List[Source]:
        with self._lock:
            return [s for s in self._sources.values() if s.is_active]

    def get_source(self, source_id: str) -> Source:
        with self._lock:
            source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        return source

    def mark_fetch_succeeded(self, source_id: str) -> None:
        with self._lock:
            source = self._require(source_id)
            self._sources[source_id] = replace(
                source, last_fetched_at=datetime.now(timezone.utc), last_error=None, last_error_at=None
            )

    def mark_fetch_failed(self, source_id: str, message: str) -> None:
        with self._lock:
            source = self._require(source_id)
            self._sources[source_id] = replace(
                source, last_error=message, last_error_at=datetime.now(timezone.utc)
            )

    def _require(self, source_id: str) -> Source:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"source not found: {source_id}")
        return source


class InMemoryArticleStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._by_url: Dict[str, Article] = {}
        self.tags: Dict[str, int] = {}

    def find_article_by_url(self, url: str) -> Optional[Article]:
        with self._lock:
            return self._by_url.get(url)

    def create_article(self, *, source_id: str, original_url: str, item: CandidateItem) -> Article:
        tag_names = list(dict.fromkeys(item.tags))
        with self._lock:
            if original_url in self._by_url:
                raise DuplicateArticleError(original_url)
            for name in tag_names:
                self.tags.setdefault(name, len(self.tags) + 1)
            article = Article(
                id=str(uuid.uuid4()),
                source_id=source_id,
                original_url=original_url,
                title=item.title,
                content=item.content,
                summary=item.summary,
                published_at=item.published_at,
                image_url=item.image_url,
                author=item.author,
                tags=tag_names,
                created_at=datetime.now(timezone.utc),
            )
            self._by_url[original_url] = article
            return article

    def all_articles(self) -> List[Article]:
        with self._lock:
            return list(self._by_url.values())

    def count_by_url(self, url: str) -> int:
        with self._lock:
            return sum(1 for a in self._by_url.values() if a.original_url == url)
