"""Tier-based polling of every active source.

Each source gets one ``schedule`` job tagged ``poll-<source_id>``. Jobs
only hand the poll to a thread pool, so a slow or hung feed never holds
up the timers of other sources. A source still being polled is skipped
rather than queued again. A background thread drives ``run_pending``.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
import threading
from typing import Any, Dict, List, Optional

import schedule

from feedpulse.ingestion.article_types import FetchResult, Source


logger = logging.getLogger(__name__)

POLL_JOB_PREFIX = "poll-"

TIER_INTERVALS_MS = {
    1: 5 * 60 * 1000,
    2: 10 * 60 * 1000,
    3: 30 * 60 * 1000,
    4: 60 * 60 * 1000,
}
DEFAULT_INTERVAL_MS = 60 * 60 * 1000


def polling_interval_ms(tier: Any) -> int:
    """Tier 1 -> 5 min, 2 -> 10 min, 3 -> 30 min, anything else -> 60 min."""
    if isinstance(tier, bool) or not isinstance(tier, int):
        return DEFAULT_INTERVAL_MS
    return TIER_INTERVALS_MS.get(tier, DEFAULT_INTERVAL_MS)


def job_key(source_id: str) -> str:
    return f"{POLL_JOB_PREFIX}{source_id}"


class FeedPoller:
    def __init__(
        self,
        sources,
        service,
        *,
        max_workers: int = 8,
        tick_seconds: float = 1.0,
        scheduler: Optional[schedule.Scheduler] = None,
    ):
        self.sources = sources
        self.service = service
        self.max_workers = max(1, max_workers)
        self.tick_seconds = tick_seconds
        self.scheduler = scheduler or schedule.Scheduler()
        self._lock = threading.RLock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._in_flight: Dict[str, Future] = {}
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, *, run_loop: bool = True) -> int:
        """Register every pollable active source and kick off its first fetch.

        Returns the number of sources registered.
        """
        logger.info("[poll] starting feed polling")
        registered = 0
        for source in self.sources.list_active_sources():
            if not source.feed_url:
                logger.warning(f"[poll] {source.name} has no feed URL; push-only, not scheduled")
                continue
            self.register_source(source)
            registered += 1
        if run_loop:
            self._start_loop()
        logger.info(f"[poll] {registered} sources scheduled")
        return registered

    def register_source(self, source: Source) -> None:
        """(Re)install the timer for ``source``; any previous timer for its id is cancelled first."""
        key = job_key(source.id)
        interval_ms = polling_interval_ms(source.tier)
        with self._lock:
            self.scheduler.clear(key)
            self._submit(source)
            self.scheduler.every(interval_ms // 1000).seconds.do(self._submit, source).tag(key)
        logger.info(
            f"[poll] polling {source.name} (tier {source.tier}) every {interval_ms // 60000} minutes"
        )

    def unregister_source(self, source_id: str) -> bool:
        key = job_key(source_id)
        with self._lock:
            had_job = bool(self.scheduler.get_jobs(key))
            self.scheduler.clear(key)
        if had_job:
            logger.info(f"[poll] stopped polling for {key}")
        return had_job

    def registered_keys(self) -> List[str]:
        with self._lock:
            jobs = list(self.scheduler.get_jobs())
        keys = {t for job in jobs for t in job.tags if isinstance(t, str) and t.startswith(POLL_JOB_PREFIX)}
        return sorted(keys)

    def stop(self, *, wait: bool = False) -> None:
        """Cancel every polling timer. Safe to call repeatedly.

        Polls already running are left to finish; ``wait=True`` blocks until they do.
        """
        logger.info("[poll] stopping feed polling")
        for key in self.registered_keys():
            with self._lock:
                self.scheduler.clear(key)
            logger.info(f"[poll] stopped polling for {key}")

        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.tick_seconds * 2, 1.0))

        with self._lock:
            executor, self._executor = self._executor, None
            self._in_flight.clear()
        if executor is not None:
            executor.shutdown(wait=wait)

    def poll_one(self, source: Source) -> FetchResult:
        """Fetch and ingest one source. Errors propagate to the caller."""
        return self.service.fetch_source(source)

    def run_pending(self) -> None:
        with self._lock:
            self.scheduler.run_pending()

    def _submit(self, source: Source) -> Optional[Future]:
        """Queue a poll unless one for the same source is still running."""
        with self._lock:
            running = self._in_flight.get(source.id)
            if running is not None and not running.done():
                logger.info(f"[poll] {source.name} is still being polled; skipping this tick")
                return None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="feed-poll")
            future = self._executor.submit(self._poll_safely, source)
            self._in_flight[source.id] = future
            return future

    def _poll_safely(self, source: Source) -> None:
        try:
            self.poll_one(source)
        except Exception as e:
            logger.error(f"[poll] error polling source {source.id} ({source.name}): {e}", exc_info=True)

    def _start_loop(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="feed-poll-scheduler", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while not self._stop_event.wait(self.tick_seconds):
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"[poll] scheduler tick failed: {e}", exc_info=True)
