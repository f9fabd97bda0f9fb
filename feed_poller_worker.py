#!/usr/bin/env python3
"""Feed polling worker.

INGEST_MODE=once (default): fetch every active source now and exit.
INGEST_MODE=scheduled|daemon: poll each source on its tier cadence until stopped.
"""

from __future__ import annotations

import json
import logging
import os
import signal
import threading

from dotenv import load_dotenv

from feedpulse.config import Settings
from feedpulse.events.publisher import build_publisher
from feedpulse.ingestion.service import FeedIngestionService
from feedpulse.scheduling.poller import FeedPoller
from feedpulse.storage.postgres_repo import PostgresArticleStore, PostgresSourceRegistry
from feedpulse.storage.postgres_schema import ensure_postgres_schema


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def build_service(settings: Settings):
    ensure_postgres_schema(settings.pg_dsn)
    sources = PostgresSourceRegistry(settings.pg_dsn)
    store = PostgresArticleStore(settings.pg_dsn)
    publisher = build_publisher(settings.redis_url, channel_prefix=settings.event_channel_prefix)
    service = FeedIngestionService(
        sources,
        store,
        publisher,
        fetch_options=settings.fetch_options(),
        canonicalize=settings.canonicalize_urls,
        max_workers=settings.poll_workers,
    )
    return sources, service


def run_once(settings: Settings) -> None:
    _, service = build_service(settings)
    summary = service.fetch_all()
    print(json.dumps(summary.to_dict(), default=str, indent=2))


def run_scheduled(settings: Settings) -> None:
    sources, service = build_service(settings)
    poller = FeedPoller(
        sources,
        service,
        max_workers=settings.poll_workers,
        tick_seconds=settings.poll_tick_seconds,
    )
    stopped = threading.Event()

    def _shutdown(signum, _frame):
        logger.info(f"[poll] received signal {signum}, shutting down")
        stopped.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    poller.start()
    try:
        while not stopped.wait(5):
            pass
    finally:
        poller.stop(wait=True)


if __name__ == "__main__":
    load_dotenv()
    settings = Settings.from_env()
    mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        run_scheduled(settings)
    else:
        run_once(settings)
