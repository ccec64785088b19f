"""Tests for page extraction and URL section resolution."""

import unittest

from catalog_mirror.errors import ExtractionError
from catalog_mirror.extractor import NotFound, derive_variant, last_url_section, require_section
from catalog_mirror.models import EntryRef, Partition, Variant

from fakes import SITE, detail_html, episode_html, feed_html, listing_html


class TestLastUrlSection(unittest.TestCase):
    """Verify id resolution from links."""

    def test_plain_path(self):
        self.assertEqual(last_url_section("https://catalog.test/naruto-episode-1"), "naruto-episode-1")

    def test_relative_path(self):
        self.assertEqual(last_url_section("/category/naruto"), "naruto")

    def test_trailing_slash(self):
        self.assertEqual(last_url_section("https://catalog.test/category/naruto/"), "naruto")

    def test_query_is_ignored(self):
        self.assertEqual(last_url_section("/category/naruto?ref=list"), "naruto")

    def test_missing_href_is_not_found(self):
        self.assertIsInstance(last_url_section(None), NotFound)
        self.assertIsInstance(last_url_section(""), NotFound)

    def test_root_path_is_not_found(self):
        self.assertIsInstance(last_url_section("https://catalog.test/"), NotFound)

    def test_require_section_raises(self):
        with self.assertRaises(ExtractionError) as ctx:
            require_section(None, "entry id", "https://catalog.test/anime-list.html?page=2")
        self.assertIn("page=2", str(ctx.exception))


class TestVariant(unittest.TestCase):

    def test_dub_marker(self):
        self.assertIs(derive_variant("One Piece (Dub)"), Variant.ALTERNATE_AUDIO)
        self.assertIs(derive_variant("One Piece"), Variant.ORIGINAL)


class TestListingPage(unittest.TestCase):
    """Verify listing page parsing."""

    def test_entries_in_document_order(self):
        page = SITE.parse_listing(listing_html(["c", "a", "b"], page=1, last_page=2), page=1)
        self.assertEqual([r.entry_id for r in page.refs], ["c", "a", "b"])
        self.assertTrue(page.has_next_page)

    def test_last_page_has_no_next(self):
        page = SITE.parse_listing(listing_html(["a"], page=2, last_page=2), page=2)
        self.assertFalse(page.has_next_page)

    def test_empty_page_still_paginates(self):
        page = SITE.parse_listing(listing_html([], page=1, last_page=3), page=1)
        self.assertEqual(page.refs, ())
        self.assertTrue(page.has_next_page)

    def test_unresolvable_link_raises(self):
        html = listing_html(["a"], page=1, last_page=1).replace('href="/category/a"', "")
        with self.assertRaises(ExtractionError):
            SITE.parse_listing(html, page=1)

    def test_comment_inside_list_is_not_an_entry(self):
        html = listing_html(["a", "b"], page=1, last_page=1).replace(
            '<ul class="listing">', '<ul class="listing"><!-- ad slot -->'
        )
        page = SITE.parse_listing(html, page=1)
        self.assertEqual(page.refs, (EntryRef(entry_id="a"), EntryRef(entry_id="b")))

    def test_unknown_layout_raises(self):
        with self.assertRaises(ExtractionError):
            SITE.parse_listing("<html><body><p>maintenance</p></body></html>", page=1)


class TestDetailPage(unittest.TestCase):
    """Verify catalog entry extraction."""

    def test_title_first_in_aliases(self):
        entry = SITE.parse_detail(detail_html("Naruto", ["NARUTO", "", "Naruto"]), "naruto")
        self.assertEqual(entry.entry_id, "naruto")
        self.assertEqual(entry.title, "Naruto")
        self.assertEqual(entry.aliases, ("Naruto", "NARUTO"))
        self.assertIs(entry.variant, Variant.ORIGINAL)

    def test_dub_title(self):
        entry = SITE.parse_detail(detail_html("Naruto (Dub)"), "naruto-dub")
        self.assertIs(entry.variant, Variant.ALTERNATE_AUDIO)

    def test_missing_title_raises(self):
        with self.assertRaises(ExtractionError):
            SITE.parse_detail(detail_html(""), "naruto")

    def test_missing_body_raises(self):
        with self.assertRaises(ExtractionError):
            SITE.parse_detail("<html></html>", "naruto")


class TestFeedAndEpisodePages(unittest.TestCase):
    """Verify recency feed and episode page parsing."""

    def test_feed_items_most_recent_first(self):
        feed = SITE.parse_feed(feed_html(["b-episode-2", "a-episode-9"], page=1, has_next=True), page=1)
        self.assertEqual(feed.item_ids, ("b-episode-2", "a-episode-9"))
        self.assertTrue(feed.has_next_page)

    def test_feed_last_page(self):
        feed = SITE.parse_feed(feed_html(["x-episode-1"], page=4, has_next=False), page=4)
        self.assertFalse(feed.has_next_page)

    def test_comment_inside_feed_list_is_skipped(self):
        html = feed_html(["b-episode-2", "a-episode-9"], page=1, has_next=False).replace(
            '<ul class="items">', '<ul class="items"><!-- c -->'
        )
        feed = SITE.parse_feed(html, page=1)
        self.assertEqual(feed.item_ids, ("b-episode-2", "a-episode-9"))

    def test_feed_without_list_raises(self):
        with self.assertRaises(ExtractionError):
            SITE.parse_feed("<html><body></body></html>", page=1)

    def test_episode_parent(self):
        self.assertEqual(SITE.parse_episode_parent(episode_html("naruto"), "naruto-episode-1"), "naruto")

    def test_episode_without_parent_link_raises(self):
        with self.assertRaises(ExtractionError):
            SITE.parse_episode_parent(episode_html(None), "naruto-episode-1")


class TestUrls(unittest.TestCase):

    def test_feed_url_carries_partition_type(self):
        url = SITE.feed_url_for(Partition.CHINESE, 2)
        self.assertTrue(url.endswith("page-recent-release.html?page=2&type=3"))

    def test_listing_and_detail_urls(self):
        self.assertEqual(SITE.listing_url(7), "https://catalog.test/anime-list.html?page=7")
        self.assertEqual(SITE.detail_url("naruto"), "https://catalog.test/category/naruto")


if __name__ == "__main__":
    unittest.main()
