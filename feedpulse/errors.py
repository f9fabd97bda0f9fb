"""Exception taxonomy for the ingestion core.

Item-level problems never raise; they are collected as strings on the
fetch result. Everything here is feed-level, persistence-level or a push
handshake rejection.
"""

from __future__ import annotations


class FeedPulseError(Exception):
    """Base class for feedpulse errors."""


class FeedFetchError(FeedPulseError):
    """The feed document could not be retrieved."""


class FeedParseError(FeedPulseError):
    """The feed document could not be parsed."""


class MissingFeedUrlError(FeedPulseError):
    """The source has no feed URL and cannot be polled."""


class SourceNotFoundError(FeedPulseError):
    pass


class StorageError(FeedPulseError):
    """Persistence failure other than a uniqueness violation."""


class DuplicateArticleError(FeedPulseError):
    """An article with the same original URL already exists."""

    def __init__(self, url: str):
        super().__init__(f"article already exists: {url}")
        self.url = url


class InvalidHubModeError(FeedPulseError):
    pass


class TopicMismatchError(FeedPulseError):
    pass


class InvalidSignatureError(FeedPulseError):
    pass
