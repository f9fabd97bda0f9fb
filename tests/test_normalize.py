import unittest
from datetime import datetime, timezone

from feedpulse.ingestion.article_types import Source
from feedpulse.ingestion.feed_fetch import parse_feed_document
from feedpulse.ingestion.normalize import (
    extract_image_url,
    extract_summary,
    normalize_feed,
    strip_markup,
)

from feed_samples import (
    ATOM_CONTENT_ONLY,
    ATOM_FEED,
    LONG_BODY,
    RSS_CONTENT_ONLY,
    RSS_EXTENDED,
    RSS_ONE_MISSING_LINK,
    RSS_TWO_ITEMS,
)


SOURCE = Source(id="s1", name="Configured Name", url="https://a/", feed_url="https://a/feed", tier=1)
FETCHED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestExtractSummary(unittest.TestCase):
    def test_short_text_is_returned_plain(self):
        self.assertEqual(extract_summary("<p>Hello <b>world</b></p>"), "Hello world")

    def test_empty_content(self):
        self.assertEqual(extract_summary(""), "")
        self.assertEqual(extract_summary(None), "")

    def test_cuts_at_full_width_stop(self):
        text = "あ" * 50 + "。" + "い" * 200
        self.assertEqual(extract_summary(text), "あ" * 50 + "。")

    def test_cuts_at_full_width_question_and_exclamation(self):
        text = "う" * 30 + "！" + "え" * 30 + "？" + "お" * 200
        self.assertEqual(extract_summary(text), "う" * 30 + "！" + "え" * 30 + "？")

    def test_cuts_at_latin_sentence_end(self):
        text = "Sentence one. Sentence two! " + "x" * 250
        self.assertEqual(extract_summary(text), "Sentence one. Sentence two!")

    def test_decimal_point_is_not_a_sentence_end(self):
        text = "Version2.5" + "y" * 250
        self.assertEqual(extract_summary(text), text[:200] + "...")

    def test_hard_truncation_adds_ellipsis(self):
        self.assertEqual(extract_summary("x" * 250), "x" * 200 + "...")

    def test_custom_length(self):
        self.assertEqual(extract_summary("abcdefghij", max_length=5), "abcde...")


class TestStripMarkup(unittest.TestCase):
    def test_removes_scripts_and_collapses_whitespace(self):
        html = "<div>Hi<script>alert(1)</script>\n\n  there</div>"
        self.assertEqual(strip_markup(html), "Hi there")


class TestExtractImageUrl(unittest.TestCase):
    def test_image_enclosure_wins(self):
        entry = {
            "enclosures": [{"href": "https://x/e.jpg", "type": "image/jpeg"}],
            "media_content": [{"url": "https://x/m.jpg"}],
            "content": [{"value": '<img src="https://x/c.jpg">'}],
        }
        self.assertEqual(extract_image_url(entry), "https://x/e.jpg")

    def test_non_image_enclosure_is_ignored(self):
        entry = {
            "enclosures": [{"href": "https://x/a.mp3", "type": "audio/mpeg"}],
            "media_thumbnail": [{"url": "https://x/t.jpg"}],
        }
        self.assertEqual(extract_image_url(entry), "https://x/t.jpg")

    def test_media_content_before_thumbnail(self):
        entry = {
            "media_content": [{"url": "https://x/v.mp4", "medium": "video"}, {"url": "https://x/m.jpg"}],
            "media_thumbnail": [{"url": "https://x/t.jpg"}],
        }
        self.assertEqual(extract_image_url(entry), "https://x/m.jpg")

    def test_falls_back_to_first_inline_image(self):
        entry = {"summary": '<p>text <img alt="none"><img src="https://x/first.png"><img src="https://x/2.png"></p>'}
        self.assertEqual(extract_image_url(entry), "https://x/first.png")

    def test_no_image(self):
        self.assertIsNone(extract_image_url({"summary": "plain text"}))


class TestNormalizeFeed(unittest.TestCase):
    def test_two_items(self):
        feed = normalize_feed(parse_feed_document(RSS_TWO_ITEMS), SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(feed.fetched_count, 2)
        self.assertEqual(feed.errors, [])
        self.assertEqual([i.url for i in feed.items], ["https://a/1", "https://a/2"])
        first, second = feed.items
        self.assertEqual(first.title, "First")
        self.assertEqual(first.summary, "First item body.")
        self.assertEqual(first.published_at, datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        # no date on the second item -> fetch time
        self.assertEqual(second.published_at, FETCHED_AT)
        # no creator -> feed title
        self.assertEqual(first.author, "Example Feed")

    def test_item_without_link_is_an_error_not_a_drop(self):
        feed = normalize_feed(parse_feed_document(RSS_ONE_MISSING_LINK), SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(feed.fetched_count, 2)
        self.assertEqual(len(feed.items), 1)
        self.assertEqual(len(feed.errors), 1)
        self.assertIn("X", feed.errors[0])
        self.assertEqual(feed.fetched_count, len(feed.items) + len(feed.errors))

    def test_extended_rss_fields(self):
        feed = normalize_feed(parse_feed_document(RSS_EXTENDED), SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(len(feed.items), 3)
        creator, media, bare = feed.items

        self.assertEqual(creator.author, "Jane Reporter")
        self.assertEqual(creator.tags, ["Politics", "World"])
        self.assertEqual(creator.image_url, "https://c/img/1.jpg")
        self.assertEqual(creator.summary, "Short teaser.")
        self.assertIn("Long body", creator.content)

        self.assertEqual(media.image_url, "https://c/img/2.jpg")

        self.assertEqual(bare.title, "Untitled")
        self.assertEqual(bare.image_url, "https://c/img/3.png")
        self.assertEqual(bare.summary, "Body with picture.")
        self.assertEqual(bare.author, "Extended Feed")
        self.assertEqual(bare.tags, [])

    def test_atom_dialect(self):
        feed = normalize_feed(parse_feed_document(ATOM_FEED), SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(len(feed.items), 1)
        item = feed.items[0]
        self.assertEqual(item.url, "https://b/1")
        self.assertEqual(item.author, "Atom Author")
        self.assertEqual(item.tags, ["tech"])
        self.assertEqual(item.summary, "Atom summary.")
        self.assertEqual(item.image_url, "https://b/img.png")
        self.assertEqual(item.published_at, datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    def test_content_only_rss_item_gets_truncated_summary(self):
        feed = normalize_feed(parse_feed_document(RSS_CONTENT_ONLY), SOURCE, fetched_at=FETCHED_AT)
        item = feed.items[0]
        self.assertIn(LONG_BODY.strip(), item.content)
        self.assertEqual(item.summary, ("Word " * 40).strip() + "...")

    def test_content_only_atom_entry_gets_truncated_summary(self):
        feed = normalize_feed(parse_feed_document(ATOM_CONTENT_ONLY), SOURCE, fetched_at=FETCHED_AT)
        item = feed.items[0]
        self.assertLessEqual(len(item.summary), 203)
        self.assertTrue(item.summary.endswith("..."))

    def test_summary_identical_to_content_is_not_a_short_form(self):
        body = "<p>" + "Sentence here. " * 30 + "</p>"
        parsed = {"feed": {}, "entries": [{"link": "https://z/1", "summary": body, "content": [{"value": body}]}]}
        item = normalize_feed(parsed, SOURCE, fetched_at=FETCHED_AT).items[0]
        self.assertTrue(item.summary.endswith("Sentence here."))
        self.assertLessEqual(len(item.summary), 200)

    def test_author_falls_back_to_source_name(self):
        parsed = {"feed": {}, "entries": [{"link": "https://z/1", "title": "t"}]}
        feed = normalize_feed(parsed, SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(feed.items[0].author, "Configured Name")

    def test_broken_entry_is_recorded(self):
        parsed = {"feed": {}, "entries": [{"link": "https://z/1", "tags": 5}, {"link": "https://z/2"}]}
        feed = normalize_feed(parsed, SOURCE, fetched_at=FETCHED_AT)
        self.assertEqual(feed.fetched_count, 2)
        self.assertEqual([i.url for i in feed.items], ["https://z/2"])
        self.assertEqual(len(feed.errors), 1)


if __name__ == "__main__":
    unittest.main()
