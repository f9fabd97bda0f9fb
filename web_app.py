#!/usr/bin/env python3
"""HTTP surface for push ingestion (WebSub) and manual fetch triggers.

Routes:
- GET  /feed/websub/<source_id>            hub verification (echo hub.challenge)
- POST /feed/websub/<source_id>            hub notification (raw feed document body)
- POST /feed/websub/<source_id>/subscribe  ask a hub to push this source to us
- POST /feed/fetch/<source_id>             fetch one source now
- POST /feed/fetch-all                     fetch every active source now
- GET  /health
"""

from __future__ import annotations

import logging
import os
import secrets
from typing import Optional

import requests
from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from feedpulse.config import Settings
from feedpulse.errors import (
    FeedFetchError,
    FeedParseError,
    InvalidHubModeError,
    InvalidSignatureError,
    MissingFeedUrlError,
    SourceNotFoundError,
    StorageError,
    TopicMismatchError,
)
from feedpulse.events.publisher import EventPublisher, build_publisher
from feedpulse.ingestion.service import FeedIngestionService
from feedpulse.push.websub import WebSubHandler
from feedpulse.storage.postgres_repo import PostgresArticleStore, PostgresSourceRegistry
from feedpulse.storage.postgres_schema import ensure_postgres_schema

# Load environment variables from .env file
load_dotenv()

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


_ERROR_STATUS = [
    (InvalidHubModeError, 400),
    (MissingFeedUrlError, 400),
    (FeedParseError, 400),
    (InvalidSignatureError, 403),
    (TopicMismatchError, 404),
    (SourceNotFoundError, 404),
    (FeedFetchError, 502),
    (StorageError, 503),
]


def create_app(
    settings: Optional[Settings] = None,
    *,
    sources=None,
    store=None,
    publisher: Optional[EventPublisher] = None,
    fetch_document=None,
    rate_limits: bool = True,
) -> Flask:
    cfg = settings or Settings.from_env()
    sources = sources if sources is not None else PostgresSourceRegistry(cfg.pg_dsn)
    store = store if store is not None else PostgresArticleStore(cfg.pg_dsn)
    publisher = publisher if publisher is not None else build_publisher(
        cfg.redis_url, channel_prefix=cfg.event_channel_prefix
    )

    service_kwargs = {}
    if fetch_document is not None:
        service_kwargs["fetch_document"] = fetch_document
    service = FeedIngestionService(
        sources,
        store,
        publisher,
        fetch_options=cfg.fetch_options(),
        canonicalize=cfg.canonicalize_urls,
        max_workers=cfg.poll_workers,
        **service_kwargs,
    )
    websub = WebSubHandler(
        sources,
        service,
        secret=cfg.websub_secret,
        lease_seconds=cfg.websub_lease_seconds,
        user_agent=cfg.user_agent,
    )

    app = Flask(__name__)
    # Hubs reach us through the reverse proxy; trust its forwarded headers.
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)
    app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", secrets.token_hex(32))
    app.json.sort_keys = False
    app.config["RATELIMIT_ENABLED"] = rate_limits
    app.extensions["feedpulse"] = {"service": service, "websub": websub, "settings": cfg}

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=["1000 per day", "200 per hour"],
        storage_uri="memory://",
    )
    limiter.init_app(app)

    @app.errorhandler(Exception)
    def handle_error(e):
        if isinstance(e, HTTPException):
            return e
        for exc_type, status in _ERROR_STATUS:
            if isinstance(e, exc_type):
                logger.warning(f"{request.method} {request.path} -> {status}: {e}")
                return jsonify({"error": str(e)}), status
        if isinstance(e, requests.RequestException):
            logger.error(f"Upstream request failed in {request.path}: {e}")
            return jsonify({"error": f"upstream request failed: {e}"}), 502
        logger.error(f"Unexpected error in {request.path}: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/health")
    @limiter.exempt
    def health():
        return jsonify({"status": "ok"})

    @app.route("/feed/websub/<source_id>", methods=["GET"])
    @limiter.limit("60 per minute")
    def verify_websub(source_id):
        challenge = websub.verify(
            source_id,
            request.args.get("hub.mode"),
            request.args.get("hub.topic"),
            request.args.get("hub.challenge"),
        )
        return Response(challenge, status=200, mimetype="text/plain")

    @app.route("/feed/websub/<source_id>", methods=["POST"])
    @limiter.limit("120 per minute")
    def websub_notification(source_id):
        result = websub.handle_notification(
            source_id,
            request.get_data(cache=False),
            signature=request.headers.get("X-Hub-Signature"),
        )
        return jsonify({"status": "ok", "result": result.to_dict()}), 200

    @app.route("/feed/websub/<source_id>/subscribe", methods=["POST"])
    @limiter.limit("10 per minute")
    def websub_subscribe(source_id):
        data = request.get_json(silent=True) or {}
        hub_url = (data.get("hub_url") or "").strip()
        if not hub_url:
            return jsonify({"error": "hub_url is required"}), 400
        base = (data.get("callback_base") or cfg.websub_callback_base or request.host_url).rstrip("/")
        source = sources.get_source(source_id)
        topic = source.feed_url or source.url
        hub_response = websub.request_subscription(
            hub_url,
            topic,
            f"{base}/feed/websub/{source.id}",
            mode=data.get("mode") or "subscribe",
        )
        return jsonify({"status": "requested", "topic": topic, "hub_response": hub_response}), 202

    @app.route("/feed/fetch/<source_id>", methods=["POST"])
    @limiter.limit("30 per minute")
    def fetch_one(source_id):
        result = service.fetch_single(source_id)
        return jsonify(result.to_dict())

    @app.route("/feed/fetch-all", methods=["POST"])
    @limiter.limit("5 per minute")
    def fetch_all():
        return jsonify(service.fetch_all().to_dict())

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    try:
        ensure_postgres_schema(settings.pg_dsn)
        logger.info("Postgres schema ready")
    except Exception as e:
        logger.error(f"Postgres schema init failed: {e}")
    port = int(os.environ.get("PORT", "5002"))
    create_app(settings).run(host="0.0.0.0", port=port)
