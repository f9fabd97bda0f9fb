"""Exactly-once article creation keyed by canonical URL.

The lookup before insert only saves a write; it is not what prevents
duplicates. Two polls racing on the same link both pass the lookup, and
the store's uniqueness constraint turns the loser into a
DuplicateArticleError, which is treated here as "already exists".
"""

from __future__ import annotations

import logging
from typing import Optional

from feedpulse.errors import DuplicateArticleError
from feedpulse.events.publisher import ARTICLE_CREATED, EventPublisher, article_created_payload
from feedpulse.ingestion.article_types import FetchResult, NormalizedFeed, Source
from feedpulse.ingestion.url_utils import canonicalize_url


logger = logging.getLogger(__name__)


class ArticleIngestor:
    def __init__(self, store, publisher: Optional[EventPublisher] = None, *, canonicalize: bool = True):
        self.store = store
        self.publisher = publisher
        self.canonicalize = canonicalize

    def dedup_key(self, url: str) -> str:
        return canonicalize_url(url) if self.canonicalize else url.strip()

    def ingest(self, source: Source, feed: NormalizedFeed) -> FetchResult:
        """Persist the new items of ``feed`` in feed order.

        Item-level errors from normalization are carried into the result.
        Storage failures other than a uniqueness violation propagate.
        """
        result = FetchResult(source_id=source.id, fetched_count=feed.fetched_count, errors=list(feed.errors))

        for item in feed.items:
            key = self.dedup_key(item.url)
            if self.store.find_article_by_url(key) is not None:
                continue
            try:
                article = self.store.create_article(source_id=source.id, original_url=key, item=item)
            except DuplicateArticleError:
                logger.debug(f"[ingest] {key} created concurrently; skipping")
                continue

            result.new_count += 1
            # Only after the write has committed.
            if self.publisher is not None:
                try:
                    self.publisher.publish(ARTICLE_CREATED, article_created_payload(article, source.id))
                except Exception as e:
                    logger.error(f"[events] failed to publish {ARTICLE_CREATED} for {key}: {e}", exc_info=True)

        return result
