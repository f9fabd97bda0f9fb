import unittest
from unittest.mock import MagicMock, patch

import requests

from feedpulse.errors import FeedFetchError, FeedParseError
from feedpulse.ingestion.feed_fetch import (
    FetchOptions,
    fetch_feed_document,
    parse_feed_document,
    validate_feed_url,
)

from feed_samples import EMPTY_RSS, RSS_TWO_ITEMS


def _response(status_code=200, chunks=(RSS_TWO_ITEMS,)):
    resp = MagicMock()
    resp.status_code = status_code
    resp.iter_content.return_value = list(chunks)
    return resp


class TestValidateFeedUrl(unittest.TestCase):
    def test_blocks_localhost(self):
        self.assertEqual(validate_feed_url("http://localhost:1234/feed"), "blocked_host")

    def test_blocks_private_ip(self):
        self.assertEqual(validate_feed_url("http://127.0.0.1:1234/feed"), "blocked_private_ip")
        self.assertEqual(validate_feed_url("http://192.168.1.10/rss"), "blocked_private_ip")

    def test_blocks_non_http_scheme(self):
        self.assertEqual(validate_feed_url("file:///etc/passwd"), "bad_scheme")

    def test_private_hosts_allowed_when_configured(self):
        self.assertIsNone(validate_feed_url("http://localhost:8080/feed", allow_private_hosts=True))

    def test_public_url_ok(self):
        self.assertIsNone(validate_feed_url("https://example.com/rss.xml"))


class TestFetchFeedDocument(unittest.TestCase):
    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_returns_body(self, mock_get):
        mock_get.return_value = _response(chunks=(b"<rss>", b"</rss>"))
        body = fetch_feed_document("https://example.com/feed", FetchOptions(user_agent="UA/1"))
        self.assertEqual(body, b"<rss></rss>")
        _, kwargs = mock_get.call_args
        self.assertEqual(kwargs["headers"]["User-Agent"], "UA/1")
        self.assertEqual(kwargs["timeout"], (5.0, 25.0))

    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_blocked_url_is_never_requested(self, mock_get):
        with self.assertRaises(FeedFetchError):
            fetch_feed_document("http://127.0.0.1/feed")
        mock_get.assert_not_called()

    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_client_error_is_not_retried(self, mock_get):
        mock_get.return_value = _response(status_code=404)
        with self.assertRaises(FeedFetchError):
            fetch_feed_document("https://example.com/feed", FetchOptions(retries=2))
        self.assertEqual(mock_get.call_count, 1)

    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_network_error_after_retries(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("unreachable")
        with self.assertRaises(FeedFetchError) as ctx:
            fetch_feed_document("https://example.com/feed", FetchOptions(retries=0))
        self.assertIn("unreachable", str(ctx.exception))

    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_transient_error_then_success(self, mock_get):
        mock_get.side_effect = [requests.ConnectionError("blip"), _response()]
        body = fetch_feed_document("https://example.com/feed", FetchOptions(retries=1))
        self.assertEqual(body, RSS_TWO_ITEMS)
        self.assertEqual(mock_get.call_count, 2)

    @patch("feedpulse.ingestion.feed_fetch.requests.get")
    def test_size_guard(self, mock_get):
        mock_get.return_value = _response(chunks=(b"x" * 10, b"y" * 10))
        with self.assertRaises(FeedFetchError):
            fetch_feed_document("https://example.com/feed", FetchOptions(max_bytes=15))


class TestParseFeedDocument(unittest.TestCase):
    def test_parses_bytes_and_str(self):
        self.assertEqual(len(parse_feed_document(RSS_TWO_ITEMS).entries), 2)
        self.assertEqual(len(parse_feed_document(RSS_TWO_ITEMS.decode("utf-8")).entries), 2)

    def test_empty_document(self):
        with self.assertRaises(FeedParseError):
            parse_feed_document(b"   ")

    def test_garbage_document(self):
        with self.assertRaises(FeedParseError):
            parse_feed_document(b"this is not a feed <<<")

    def test_valid_feed_without_items(self):
        parsed = parse_feed_document(EMPTY_RSS)
        self.assertEqual(parsed.entries, [])

    def test_url_like_string_is_not_fetched(self):
        with patch("urllib.request.urlopen") as mock_open:
            with self.assertRaises(FeedParseError):
                parse_feed_document("http://169.254.169.254/latest/meta-data")
            mock_open.assert_not_called()


if __name__ == "__main__":
    unittest.main()
