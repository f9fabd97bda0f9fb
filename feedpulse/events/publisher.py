"""Event publishing boundary.

The core only knows ``publish(kind, payload)``. Transports:
- RedisPublisher: JSON messages on ``<prefix>:<kind>`` channels
- InMemoryPublisher: synchronous fan-out to local subscribers (tests, single process)
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import redis

from feedpulse.ingestion.article_types import Article, Source


logger = logging.getLogger(__name__)

ARTICLE_CREATED = "articleCreated"
SOURCE_FEED_FETCHED = "sourceFeedFetched"


class EventPublisher(Protocol):
    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        ...


def article_created_payload(article: Article, source_id: str) -> Dict[str, Any]:
    return {"article": article.to_dict(), "sourceId": source_id}


def source_feed_fetched_payload(
    source: Source, new_articles_count: int, *, timestamp: Optional[datetime] = None
) -> Dict[str, Any]:
    ts = timestamp or datetime.now(timezone.utc)
    return {
        "sourceId": source.id,
        "sourceName": source.name,
        "newArticlesCount": new_articles_count,
        "timestamp": ts.isoformat(),
    }


class InMemoryPublisher:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = {}
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def subscribe(self, kind: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(kind, []).append(callback)

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.published.append((kind, payload))
            callbacks = list(self._subscribers.get(kind, []))
        for cb in callbacks:
            try:
                cb(payload)
            except Exception as e:
                # A broken subscriber must not fail ingestion that already committed.
                logger.warning(f"[events] subscriber for {kind} failed: {e}")

    def events_of(self, kind: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [p for k, p in self.published if k == kind]


class RedisPublisher:
    def __init__(self, redis_url: str, *, channel_prefix: str = "feedpulse", client: Optional[redis.Redis] = None):
        self.channel_prefix = channel_prefix
        self._r = client or redis.Redis.from_url(redis_url)

    def channel_for(self, kind: str) -> str:
        return f"{self.channel_prefix}:{kind}"

    def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        message = json.dumps(payload, default=str, ensure_ascii=False)
        self._r.publish(self.channel_for(kind), message)


def build_publisher(redis_url: Optional[str], *, channel_prefix: str = "feedpulse") -> EventPublisher:
    """Redis when configured, otherwise an in-process publisher."""
    if redis_url:
        logger.info(f"[events] publishing to Redis channels '{channel_prefix}:*'")
        return RedisPublisher(redis_url, channel_prefix=channel_prefix)
    logger.info("[events] REDIS_URL not set; using in-memory publisher")
    return InMemoryPublisher()
