import logging
import re
from html import unescape
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

logger = logging.getLogger("archivist.extraction.text_processor")


class TextProcessor:
    """Local text extraction with BeautifulSoup, no external service involved.

    Used when the extraction service is unavailable: strips markup down to
    readable text so the item is still archived, flagged as degraded.
    """

    # Tried in order when no content selector is configured
    CONTENT_SELECTORS = ("main", "article", "[role=main]", "#content", ".content", "#main", ".main")
    NOISE_TAGS = ["script", "style", "nav", "footer", "header", "noscript", "template"]

    def html_to_text(self, html: str, content_selector: str | None = None) -> str:
        """Strip HTML tags, scripts, styles and return clean text."""
        if not html:
            return ""
        soup = BeautifulSoup(html, "lxml")

        # Remove script and style elements
        for tag in soup(self.NOISE_TAGS):
            tag.decompose()

        container = self._find_container(soup, content_selector)
        text = container.get_text(separator=" ", strip=True)
        # Clean up whitespace
        text = re.sub(r"\s+", " ", text).strip()
        # Unescape HTML entities
        text = unescape(text)
        return text

    def _find_container(self, soup: BeautifulSoup, content_selector: str | None):
        selectors = (content_selector,) if content_selector else self.CONTENT_SELECTORS
        for selector in selectors:
            try:
                element = soup.select_one(selector)
            except SelectorSyntaxError as e:
                logger.warning("Invalid content selector %r: %s", selector, e)
                continue
            if element is not None:
                return element
        return soup.body or soup

    def extract_title(self, html: str, url: str) -> str:
        """Title from <title>, the first <h1>, or og:title; else from the URL."""
        if html:
            soup = BeautifulSoup(html, "lxml")
            candidates = [
                soup.title.get_text(strip=True) if soup.title else "",
                soup.h1.get_text(strip=True) if soup.h1 else "",
            ]
            meta = soup.find("meta", attrs={"property": "og:title"})
            if meta is not None:
                candidates.append(meta.get("content", "").strip())
            for candidate in candidates:
                if candidate:
                    return unescape(candidate)
        return title_from_url(url)


def title_from_url(url: str) -> str:
    """``https://x.org/blog/my-first_post.html`` -> ``My First Post``."""
    parsed = urlparse(url)
    parts = [p for p in parsed.path.split("/") if p]
    if not parts:
        return parsed.netloc.removeprefix("www.") or "Untitled"
    last = re.sub(r"\.[A-Za-z0-9]+$", "", unquote(parts[-1]))
    return re.sub(r"[-_]+", " ", last).strip().title() or "Untitled"
