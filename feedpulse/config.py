"""Environment-driven settings.

Entry points call ``load_dotenv()`` first; everything else reads a
``Settings`` instance instead of touching ``os.environ`` directly.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping, Optional

from feedpulse.ingestion.feed_fetch import FetchOptions


DEFAULT_PG_DSN = "dbname=feedpulse user=feedpulse password=feedpulse host=localhost port=5432"


def _bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _int(value: Optional[str], default: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _float(value: Optional[str], default: float) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Settings:
    pg_dsn: str = DEFAULT_PG_DSN
    redis_url: Optional[str] = None
    event_channel_prefix: str = "feedpulse"
    user_agent: str = "FeedPulse/1.0"
    connect_timeout: float = 5.0
    read_timeout: float = 25.0
    max_bytes: int = 5_000_000
    fetch_retries: int = 2
    allow_private_hosts: bool = False
    canonicalize_urls: bool = True
    poll_workers: int = 8
    poll_tick_seconds: float = 1.0
    websub_secret: Optional[str] = None
    websub_callback_base: Optional[str] = None
    websub_lease_seconds: int = 864000

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        e = os.environ if env is None else env
        return cls(
            pg_dsn=e.get("PG_DSN", DEFAULT_PG_DSN),
            redis_url=(e.get("REDIS_URL") or "").strip() or None,
            event_channel_prefix=e.get("EVENT_CHANNEL_PREFIX", "feedpulse"),
            user_agent=e.get("FEED_USER_AGENT", "FeedPulse/1.0"),
            connect_timeout=_float(e.get("FEED_CONNECT_TIMEOUT"), 5.0),
            read_timeout=_float(e.get("FEED_READ_TIMEOUT"), 25.0),
            max_bytes=_int(e.get("FEED_MAX_BYTES"), 5_000_000),
            fetch_retries=_int(e.get("FEED_FETCH_RETRIES"), 2),
            allow_private_hosts=_bool(e.get("FEED_ALLOW_PRIVATE_HOSTS")),
            canonicalize_urls=_bool(e.get("CANONICALIZE_URLS"), True),
            poll_workers=_int(e.get("POLL_WORKERS"), 8),
            poll_tick_seconds=_float(e.get("POLL_TICK_SECONDS"), 1.0),
            websub_secret=(e.get("WEBSUB_SECRET") or "").strip() or None,
            websub_callback_base=(e.get("WEBSUB_CALLBACK_BASE") or "").strip() or None,
            websub_lease_seconds=_int(e.get("WEBSUB_LEASE_SECONDS"), 864000),
        )

    def fetch_options(self) -> FetchOptions:
        return FetchOptions(
            user_agent=self.user_agent,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            max_bytes=self.max_bytes,
            retries=self.fetch_retries,
            allow_private_hosts=self.allow_private_hosts,
        )
