"""Entry extraction for the catalog site's page layouts.

Everything here is a pure function of page content: no I/O. Structural
mismatches raise ExtractionError so that a layout change on the site
surfaces as a failure instead of an incomplete catalog.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union
from urllib.parse import urlsplit

from selectolax.parser import HTMLParser, Node

from .errors import ExtractionError
from .models import CatalogEntry, EntryRef, FeedPage, ListingPage, Partition, Variant

ALTERNATE_AUDIO_MARKER = "(Dub)"

_NON_ELEMENT_TAGS = frozenset({"-text", "_comment", "-comment"})


@dataclass(frozen=True)
class NotFound:
    reason: str


SectionResult = Union[str, NotFound]


def last_url_section(url: Optional[str]) -> SectionResult:
    """Return the last non-empty path segment of ``url``.

    >>> last_url_section("https://example.com/category/naruto/")
    'naruto'
    """
    if not url or not url.strip():
        return NotFound("link has no href")
    path = urlsplit(url.strip()).path
    sections = [s for s in path.split("/") if s]
    if not sections:
        return NotFound(f"link {url!r} has no path section")
    return sections[-1]


def require_section(url: Optional[str], what: str, page_url: Optional[str] = None) -> str:
    result = last_url_section(url)
    if isinstance(result, NotFound):
        raise ExtractionError(f"could not resolve {what}: {result.reason}", url=page_url)
    return result


def derive_variant(title: str) -> Variant:
    if ALTERNATE_AUDIO_MARKER in title:
        return Variant.ALTERNATE_AUDIO
    return Variant.ORIGINAL


def _next_element(node: Node) -> Optional[Node]:
    sibling = node.next
    while sibling is not None and sibling.tag in _NON_ELEMENT_TAGS:
        sibling = sibling.next
    return sibling


def _has_page_after_selected(tree: HTMLParser, selector: str) -> bool:
    selected = tree.css_first(selector)
    return selected is not None and _next_element(selected) is not None


def _child_links(container: Node) -> List[Optional[str]]:
    hrefs: List[Optional[str]] = []
    for item in container.iter():
        if item.tag in _NON_ELEMENT_TAGS:
            continue
        anchor = item.css_first("a")
        hrefs.append(anchor.attributes.get("href") if anchor is not None else None)
    return hrefs


class CatalogSite:
    """URLs and page shapes of the catalog site."""

    LISTING_BODY = "section.content_left div.anime_list_body"
    LISTING_ITEMS = "section.content_left > div > div.anime_list_body > ul"
    LISTING_SELECTED_PAGE = "div.anime_name.anime_list > div > div > ul > li.selected"
    DETAIL_BODY = "div.anime_info_body_bg"
    DETAIL_TITLE = "div.anime_info_body_bg > h1"
    DETAIL_OTHER_NAMES = "div.anime_info_body_bg > p.type.other-name a"
    EPISODE_PARENT_LINK = "div.anime_video_body_cate > div.anime-info > a"
    FEED_ITEMS = "div.last_episodes.loaddub > ul"
    FEED_SELECTED_PAGE = "ul.pagination-list > li.selected"

    def __init__(self, base_url: str, feed_url: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.feed_url = feed_url.rstrip("/")

    def listing_url(self, page: int) -> str:
        return f"{self.base_url}/anime-list.html?page={page}"

    def detail_url(self, entry_id: str) -> str:
        return f"{self.base_url}/category/{entry_id}"

    def episode_url(self, item_id: str) -> str:
        return f"{self.base_url}/{item_id}"

    def feed_url_for(self, partition: Partition, page: int) -> str:
        return f"{self.feed_url}/page-recent-release.html?page={page}&type={partition.value}"

    def parse_listing(self, html: str, page: int, url: Optional[str] = None) -> ListingPage:
        """Entry references in document order plus the pagination flag.

        Every reference must resolve to an id; one that does not aborts the
        whole page.
        """
        tree = HTMLParser(html)
        if tree.css_first(self.LISTING_BODY) is None:
            raise ExtractionError(f"listing page {page} has no entry list", url=url)

        refs: List[EntryRef] = []
        container = tree.css_first(self.LISTING_ITEMS)
        if container is not None:
            for position, href in enumerate(_child_links(container)):
                entry_id = require_section(href, f"entry id at position {position} of listing page {page}", url)
                refs.append(EntryRef(entry_id=entry_id))

        return ListingPage(
            page=page,
            refs=tuple(refs),
            has_next_page=_has_page_after_selected(tree, self.LISTING_SELECTED_PAGE),
        )

    def parse_detail(self, html: str, entry_id: str, url: Optional[str] = None) -> CatalogEntry:
        tree = HTMLParser(html)
        if tree.css_first(self.DETAIL_BODY) is None:
            raise ExtractionError(f"detail page for {entry_id} has no info body", url=url)
        title_node = tree.css_first(self.DETAIL_TITLE)
        title = title_node.text(strip=True) if title_node is not None else ""
        if not title:
            raise ExtractionError(f"detail page for {entry_id} has no title", url=url)

        aliases = [title]
        for node in tree.css(self.DETAIL_OTHER_NAMES):
            name = node.text(strip=True)
            if name and name not in aliases:
                aliases.append(name)

        return CatalogEntry(
            entry_id=entry_id,
            title=title,
            variant=derive_variant(title),
            aliases=tuple(aliases),
        )

    def parse_episode_parent(self, html: str, item_id: str, url: Optional[str] = None) -> str:
        """Catalog entry id linked from an episode page."""
        tree = HTMLParser(html)
        anchor = tree.css_first(self.EPISODE_PARENT_LINK)
        href = anchor.attributes.get("href") if anchor is not None else None
        return require_section(href, f"parent entry of {item_id}", url)

    def parse_feed(self, html: str, page: int, url: Optional[str] = None) -> FeedPage:
        """Feed item ids on one recency page, most recent first."""
        tree = HTMLParser(html)
        container = tree.css_first(self.FEED_ITEMS)
        if container is None:
            raise ExtractionError(f"feed page {page} has no item list", url=url)

        item_ids = [
            require_section(href, f"feed item at position {position} of page {page}", url)
            for position, href in enumerate(_child_links(container))
        ]
        return FeedPage(
            page=page,
            item_ids=tuple(item_ids),
            has_next_page=_has_page_after_selected(tree, self.FEED_SELECTED_PAGE),
        )
