"""WebSub (PubSubHubbub) push ingestion.

Verification is a handshake echo: a recognized ``hub.mode`` for a known
source and matching topic returns ``hub.challenge`` verbatim. Notifications
carry a full feed document and go through the same ingestion path as
polling.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import threading
from typing import Dict, Optional

import requests

from feedpulse.errors import InvalidHubModeError, InvalidSignatureError, TopicMismatchError
from feedpulse.ingestion.article_types import FetchResult, Source
from feedpulse.ingestion.url_utils import canonicalize_url


logger = logging.getLogger(__name__)

VALID_MODES = ("subscribe", "unsubscribe")
DEFAULT_LEASE_SECONDS = 864000  # 10 days
_SIGNATURE_ALGORITHMS = ("sha1", "sha256", "sha384", "sha512")


def _topic_key(url: Optional[str]) -> str:
    return canonicalize_url(url or "").rstrip("/")


def topic_matches(source: Source, topic: Optional[str]) -> bool:
    if not topic:
        return False
    key = _topic_key(topic)
    return any(key == _topic_key(candidate) for candidate in (source.feed_url, source.url) if candidate)


def verify_signature(secret: str, body: bytes, header: Optional[str]) -> None:
    """Check ``X-Hub-Signature: <algo>=<hexdigest>`` against an HMAC of the raw body."""
    if not header or "=" not in header:
        raise InvalidSignatureError("missing or malformed X-Hub-Signature")
    algo, _, digest = header.partition("=")
    algo = algo.strip().lower()
    if algo not in _SIGNATURE_ALGORITHMS:
        raise InvalidSignatureError(f"unsupported signature algorithm: {algo}")
    expected = hmac.new(secret.encode("utf-8"), body, getattr(hashlib, algo)).hexdigest()
    if not hmac.compare_digest(expected, digest.strip().lower()):
        raise InvalidSignatureError("signature mismatch")


class WebSubHandler:
    def __init__(
        self,
        sources,
        service,
        *,
        secret: Optional[str] = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        user_agent: str = "FeedPulse/1.0",
        timeout: float = 15.0,
    ):
        self.sources = sources
        self.service = service
        self.secret = secret or None
        self.lease_seconds = lease_seconds
        self.user_agent = user_agent
        self.timeout = timeout
        self._lock = threading.Lock()
        self._states: Dict[str, str] = {}

    def subscription_state(self, source_id: str) -> str:
        with self._lock:
            return self._states.get(source_id, "unsubscribed")

    def verify(self, source_id: str, mode: Optional[str], topic: Optional[str], challenge: Optional[str]) -> str:
        logger.info(f"[websub] verification request: source={source_id} mode={mode} topic={topic}")
        if mode not in VALID_MODES:
            raise InvalidHubModeError(f"Invalid hub.mode: {mode!r}")
        source = self.sources.get_source(source_id)
        if not topic_matches(source, topic):
            raise TopicMismatchError(f"hub.topic {topic!r} does not match source {source_id}")

        with self._lock:
            self._states[source_id] = "subscribed" if mode == "subscribe" else "unsubscribed"
        return challenge or ""

    def handle_notification(self, source_id: str, body: bytes, signature: Optional[str] = None) -> FetchResult:
        logger.info(f"[websub] notification for source {source_id} ({len(body or b'')} bytes)")
        source = self.sources.get_source(source_id)
        if self.secret:
            verify_signature(self.secret, body or b"", signature)
        result = self.service.ingest_content(source, body)
        logger.info(f"[websub] processed notification for {source.name}: new={result.new_count}")
        return result

    def request_subscription(
        self,
        hub_url: str,
        topic_url: str,
        callback_url: str,
        *,
        mode: str = "subscribe",
        lease_seconds: Optional[int] = None,
    ) -> str:
        """Ask ``hub_url`` to (un)subscribe ``callback_url`` to ``topic_url``.

        The hub confirms asynchronously by calling the verification endpoint.
        """
        if mode not in VALID_MODES:
            raise InvalidHubModeError(f"Invalid hub.mode: {mode!r}")
        data = {
            "hub.mode": mode,
            "hub.topic": topic_url,
            "hub.callback": callback_url,
            "hub.lease_seconds": str(lease_seconds or self.lease_seconds),
        }
        if self.secret:
            data["hub.secret"] = self.secret
        resp = requests.post(
            hub_url,
            data=data,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        logger.info(f"[websub] {mode} requested for {topic_url} at {hub_url}")
        return resp.text
