"""Fetch -> normalize -> ingest -> bookkeeping for one source.

Polling, push notifications and the manual triggers all run through
FeedIngestionService so they share the same dedup and event guarantees.
Feed-level failures are recorded on the source and then re-raised; the
caller decides whether to continue.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, Optional

from feedpulse.errors import MissingFeedUrlError
from feedpulse.events.publisher import SOURCE_FEED_FETCHED, EventPublisher, source_feed_fetched_payload
from feedpulse.ingestion.article_types import BulkFetchResult, FetchResult, Source
from feedpulse.ingestion.dedup import ArticleIngestor
from feedpulse.ingestion.feed_fetch import FetchOptions, fetch_feed_document, parse_feed_document
from feedpulse.ingestion.normalize import normalize_feed


logger = logging.getLogger(__name__)


class FeedIngestionService:
    def __init__(
        self,
        sources,
        store,
        publisher: Optional[EventPublisher] = None,
        *,
        fetch_options: Optional[FetchOptions] = None,
        canonicalize: bool = True,
        fetch_document: Callable[[str, FetchOptions], Any] = fetch_feed_document,
        max_workers: int = 8,
    ):
        self.sources = sources
        self.publisher = publisher
        self.fetch_options = fetch_options or FetchOptions()
        self.ingestor = ArticleIngestor(store, publisher, canonicalize=canonicalize)
        self._fetch_document = fetch_document
        self.max_workers = max(1, max_workers)

    def fetch_source(self, source: Source) -> FetchResult:
        """Poll one source now."""
        if not source.feed_url:
            raise MissingFeedUrlError(f"source {source.name} ({source.id}) has no feed URL")

        logger.debug(f"[poll] fetching {source.name}: {source.feed_url}")
        try:
            content = self._fetch_document(source.feed_url, self.fetch_options)
            result = self._ingest(source, content)
        except Exception as e:
            self._record_failure(source, e)
            raise
        self._record_success(source, result)
        return result

    def ingest_content(self, source: Source, content: Any) -> FetchResult:
        """Ingest a feed document delivered to us instead of fetched."""
        try:
            result = self._ingest(source, content)
        except Exception as e:
            self._record_failure(source, e)
            raise
        self._record_success(source, result)
        return result

    def fetch_single(self, source_id: str) -> FetchResult:
        return self.fetch_source(self.sources.get_source(source_id))

    def fetch_all(self) -> BulkFetchResult:
        """Fetch every active source; one source failing never aborts the rest."""
        active = self.sources.list_active_sources()
        summary = BulkFetchResult(total=len(active))
        if not active:
            return summary

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(active))) as pool:
            futures = [(source, pool.submit(self.fetch_source, source)) for source in active]
            for source, fut in futures:
                entry: Dict[str, Any] = {"id": source.id, "name": source.name}
                try:
                    result = fut.result()
                except Exception as e:
                    logger.error(f"[poll] fetch-all: {source.name} failed: {e}")
                    summary.failed += 1
                    entry.update({"status": "rejected", "error": str(e), "result": None})
                else:
                    summary.successful += 1
                    entry.update({"status": "fulfilled", "error": None, "result": result.to_dict()})
                summary.sources.append(entry)

        logger.info(
            f"[poll] fetch-all finished: total={summary.total} ok={summary.successful} failed={summary.failed}"
        )
        return summary

    def _ingest(self, source: Source, content: Any) -> FetchResult:
        fetched_at = datetime.now(timezone.utc)
        parsed = parse_feed_document(content)
        normalized = normalize_feed(parsed, source, fetched_at=fetched_at)
        return self.ingestor.ingest(source, normalized)

    def _record_success(self, source: Source, result: FetchResult) -> None:
        self.sources.mark_fetch_succeeded(source.id)
        logger.info(
            f"[ingest] {source.name}: fetched={result.fetched_count} new={result.new_count} errors={len(result.errors)}"
        )
        if result.new_count > 0 and self.publisher is not None:
            try:
                self.publisher.publish(SOURCE_FEED_FETCHED, source_feed_fetched_payload(source, result.new_count))
            except Exception as e:
                logger.error(f"[events] failed to publish {SOURCE_FEED_FETCHED} for {source.id}: {e}", exc_info=True)

    def _record_failure(self, source: Source, error: Exception) -> None:
        try:
            self.sources.mark_fetch_failed(source.id, str(error) or type(error).__name__)
        except Exception as e:
            logger.error(f"[poll] could not record failure for {source.id}: {e}")
