import logging
import re
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from archivist.schemas import Source
from archivist.services.crawler.base import ListingPage
from archivist.utils.patterns import should_include

logger = logging.getLogger("archivist.crawler.links")

NEXT_LABELS = {
    "next", "next page", "next »", "next ›", "next →",
    "older", "older posts", "older entries",
    "›", "»", "→", ">", ">>",
}
MORE_LABELS = {"load more", "show more", "more", "more posts", "see more", "next"}

_NEXT_CLASS = re.compile(r"(^|[\s_-])next([\s_-]|$)|next-page|nav-next|pagination-next", re.I)
_MORE_CLASS = re.compile(r"load-?more|show-?more|more-link|infinite", re.I)
_PAGER_CLASS = re.compile(r"pagination|pager|page-numbers|paging", re.I)
_HIDDEN_STYLE = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.I)
_SKIP_PREFIXES = ("#", "mailto:", "javascript:", "tel:", "data:")
_CHROME_TAGS = ("nav", "header", "footer")


def normalize_url(url: str) -> str:
    """Drop the fragment; keep the query, which often identifies the item."""
    return urldefrag(url).url


def resolve_href(href: str | None, base_url: str) -> str | None:
    """Turn an href into an absolute http(s) URL, or None if it isn't one."""
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(_SKIP_PREFIXES):
        return None
    full_url = urljoin(base_url, href)
    if urlparse(full_url).scheme not in ("http", "https"):
        return None
    return normalize_url(full_url)


def _host(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def _label(tag: Tag) -> str:
    text = tag.get_text(" ", strip=True) or tag.get("aria-label", "") or tag.get("title", "")
    return re.sub(r"\s+", " ", text).strip().lower()


def _classes(tag: Tag) -> str:
    return " ".join(tag.get("class", [])) + " " + (tag.get("id") or "")


def _in_page_chrome(tag: Tag) -> bool:
    """True for anchors that sit in navigation, headers, footers or pagers."""
    for parent in tag.parents:
        if parent.name in _CHROME_TAGS:
            return True
        if isinstance(parent, Tag) and _PAGER_CLASS.search(_classes(parent)):
            return True
    return False


def _is_hidden(tag: Tag) -> bool:
    for node in [tag, *tag.parents]:
        if not isinstance(node, Tag):
            continue
        if node.name == "noscript" or node.has_attr("hidden"):
            return True
        if node.get("aria-hidden") == "true" or _HIDDEN_STYLE.search(node.get("style", "")):
            return True
    return False


def find_next_link(soup: BeautifulSoup, base_url: str, next_selector: str | None = None) -> str | None:
    """Locate the link explicitly marked as "next"."""
    if next_selector:
        try:
            element = soup.select_one(next_selector)
        except SelectorSyntaxError as e:
            logger.warning("Invalid next selector %r: %s", next_selector, e)
            element = None
        if element is None:
            return None
        if element.name != "a":
            element = element.find("a", href=True) or element
        return resolve_href(element.get("href"), base_url)

    tagged = soup.select_one('a[rel~="next"][href], link[rel~="next"][href]')
    if tagged is not None:
        return resolve_href(tagged.get("href"), base_url)

    for a_tag in soup.find_all("a", href=True):
        if _is_hidden(a_tag):
            continue
        if _label(a_tag) in NEXT_LABELS or _NEXT_CLASS.search(_classes(a_tag)):
            return resolve_href(a_tag["href"], base_url)
    return None


def find_more_link(soup: BeautifulSoup, base_url: str) -> str | None:
    """Locate the "load more" fallback exposed for clients without JavaScript.

    Infinite-scroll pages usually ship it inside <noscript> or a hidden
    container; the visible control is driven by script and has no href.
    """
    candidates = []
    for noscript in soup.find_all("noscript"):
        anchors = noscript.find_all("a", href=True)
        if not anchors:
            # Some parsers keep noscript content as raw text
            inner = BeautifulSoup(noscript.get_text(), "lxml")
            anchors = inner.find_all("a", href=True)
        candidates.extend(anchors)
    candidates.extend(a for a in soup.find_all("a", href=True) if _is_hidden(a))

    fallback = None
    for a_tag in candidates:
        url = resolve_href(a_tag.get("href"), base_url)
        if url is None:
            continue
        if _label(a_tag) in MORE_LABELS or _MORE_CLASS.search(_classes(a_tag)):
            return url
        if a_tag.get("rel") and "next" in a_tag.get("rel"):
            return url
        fallback = fallback or url
    return fallback


def page_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "template"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ", strip=True)).strip()


def extract_links(
    html: str | None,
    base_url: str,
    source: Source,
    visited: set[str] | frozenset[str] = frozenset(),
    status_code: int | None = 200,
    selector: str | None = None,
) -> ListingPage:
    """Parse a listing page into content-item links and navigation links.

    ``new_urls`` holds the items not yet in ``visited``; its length is the
    volume signal consumed by the stop-condition evaluator. The visited set
    itself is left untouched. Empty or unparsable markup yields no links.
    """
    page = ListingPage(url=base_url, status_code=status_code)
    if not html or not html.strip():
        return page

    try:
        soup = BeautifulSoup(html, "lxml")
    except Exception as e:  # lxml can reject pathological input
        logger.warning("Unparsable markup at %s: %s", base_url, e)
        return page

    page.next_url = find_next_link(soup, base_url, source.next_selector)
    page.more_url = find_more_link(soup, base_url)
    navigation = {base_url, normalize_url(base_url), page.next_url, page.more_url}

    link_selector = selector or source.link_selector
    default_selector = selector is None and link_selector == "a[href]"
    try:
        elements = soup.select(link_selector)
    except SelectorSyntaxError as e:
        logger.warning("Invalid link selector %r: %s", link_selector, e)
        elements = []

    base_host = _host(base_url)
    seen: set[str] = set()
    for element in elements:
        anchor = element if element.name == "a" else element.find("a", href=True)
        if anchor is None:
            continue
        rel = anchor.get("rel") or []
        if "next" in rel or "prev" in rel:
            continue
        if default_selector and (_in_page_chrome(anchor) or _is_hidden(anchor)):
            continue
        url = resolve_href(anchor.get("href"), base_url)
        if url is None or url in seen or url in navigation:
            continue
        if source.same_domain and _host(url) != base_host:
            continue
        if not should_include(url, source.include_patterns, source.exclude_patterns):
            continue
        seen.add(url)
        page.item_urls.append(url)

    page.new_urls = [url for url in page.item_urls if url not in visited]
    page.text = page_text(soup)
    return page
