"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Source:
    """A registered feed source.

    ``tier`` only drives polling cadence. A source without ``feed_url``
    is push-only and is never scheduled.
    """

    id: str
    name: str
    url: str
    feed_url: Optional[str] = None
    tier: int = 4
    is_active: bool = True
    last_fetched_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None


@dataclass(frozen=True)
class CandidateItem:
    """Normalized feed entry prior to the dedup decision. Never persisted directly."""

    title: str
    url: str
    content: str
    summary: str
    published_at: datetime
    image_url: Optional[str] = None
    author: Optional[str] = None
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NormalizedFeed:
    items: List[CandidateItem]
    errors: List[str]
    fetched_count: int
    feed_title: Optional[str] = None


@dataclass(frozen=True)
class Article:
    id: str
    source_id: str
    original_url: str
    title: str
    content: str
    summary: str
    published_at: datetime
    image_url: Optional[str] = None
    author: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "original_url": self.original_url,
            "title": self.title,
            "content": self.content,
            "summary": self.summary,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "image_url": self.image_url,
            "author": self.author,
            "tags": list(self.tags),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class FetchResult:
    """Per-source, per-run summary. Used for logging and tests; never stored."""

    source_id: str
    fetched_count: int = 0
    new_count: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "fetched_count": self.fetched_count,
            "new_count": self.new_count,
            "errors": list(self.errors),
        }


@dataclass
class BulkFetchResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    sources: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "sources": list(self.sources),
        }
