import copy
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from urllib.parse import urljoin

from bs4 import Tag

from .chapter_list import ChapterList
from .models import Page, StoryMetadata
from .sanitizer import remove_furniture
from .utils import get_logger, is_blank, is_http_url, normalize_url_for_compare

logger = get_logger("Strategy")

DEFAULT_TITLE = "Untitled Story"
DEFAULT_AUTHOR = "Unknown Author"
DEFAULT_LANGUAGE = "en"

CONTENT_SELECTORS = [
    "article", ".content", ".post-content", ".entry-content",
    ".chapter-content", ".story-content", "main", "#content",
    ".main-content", ".text-content", ".chapter-text",
    ".chapter-body", ".post-body", ".entry-body",
]

# A region needs more visible text than this to count as the chapter
SIGNIFICANT_TEXT_LENGTH = 200

NAVIGATION_CLASS_KEYWORDS = ["nav", "navigation", "menu", "sidebar", "header", "footer"]

CHAPTER_TITLE_SELECTOR = "h1, h2, h3, .chapter-title, .title"
MAX_CHAPTER_TITLE_LENGTH = 200

CHAPTER_LINK_PATTERNS = [
    re.compile(r"chapter", re.IGNORECASE),
    re.compile(r"ch\s*\d+", re.IGNORECASE),
    re.compile(r"episode", re.IGNORECASE),
    re.compile(r"part", re.IGNORECASE),
    re.compile(r"\d+"),
]


# -- Extraction helpers --

def first_non_blank(*sources: Callable[[], Optional[str]]) -> Optional[str]:
    """Calls each source in turn and returns the first non-blank value, stripped."""
    for source in sources:
        value = source()
        if not is_blank(value):
            return value.strip()
    return None


def select_text(root, selector: str) -> Optional[str]:
    element = root.select_one(selector)
    return element.get_text() if element is not None else None


def select_attr(root, selector: str, attribute: str) -> Optional[str]:
    element = root.select_one(selector)
    if element is None:
        return None
    value = element.get(attribute)
    if isinstance(value, list):
        value = " ".join(value)
    return value


def class_string(element: Tag) -> str:
    value = element.get("class") or []
    if isinstance(value, str):
        return value
    return " ".join(value)


# -- Chapter discovery --

def is_likely_chapter_link(url: str, text: str) -> bool:
    return any(p.search(text) or p.search(url) for p in CHAPTER_LINK_PATTERNS)


def hyperlinks_to_chapter_list(
    element: Optional[Tag],
    base_url: str,
    predicate: Optional[Callable[[str, str], bool]] = None,
) -> List[Tuple[str, str]]:
    """
    Collects (url, title) pairs from every <a> under element, in document order.

    Links without text or href are skipped, hrefs are resolved against
    base_url and only http(s) targets are kept. A link whose normalized URL
    was already seen is dropped even if the earlier one failed the predicate.
    """
    if element is None:
        return []

    seen = set()
    links = []
    for link in element.find_all("a"):
        text = link.get_text()
        href = link.get("href")
        if is_blank(text) or is_blank(href):
            continue

        url = urljoin(base_url, href.strip())
        if not is_http_url(url):
            logger.debug(f"Skipping non-http link: {href}")
            continue

        key = normalize_url_for_compare(url)
        if key in seen:
            continue
        seen.add(key)

        title = text.strip()
        if predicate is not None and not predicate(url, title):
            logger.debug(f"Link does not look like a chapter: '{title}' -> {url}")
            continue
        links.append((url, title))
    return links


def default_discover_chapters(page: Page) -> ChapterList:
    links = hyperlinks_to_chapter_list(page.body, page.url, is_likely_chapter_link)
    return ChapterList.from_links(links)


# -- Content region --

def is_navigation_element(element: Tag) -> bool:
    classes = class_string(element).lower()
    return any(keyword in classes for keyword in NAVIGATION_CLASS_KEYWORDS)


def has_significant_content(element: Tag) -> bool:
    text = element.get_text().strip()
    return len(text) > SIGNIFICANT_TEXT_LENGTH and not is_navigation_element(element)


def default_locate_content_region(page: Page) -> Tag:
    """
    Returns a detached copy of the chapter text region.
    Falls back to the whole body with site furniture stripped.
    """
    for selector in CONTENT_SELECTORS:
        element = page.soup.select_one(selector)
        if element is not None and has_significant_content(element):
            logger.debug(f"Content region matched '{selector}'")
            return copy.copy(element)

    logger.debug(f"No content selector matched on {page.url}, using the document body")
    body = copy.copy(page.body)
    remove_furniture(body)
    return body


# -- Metadata --

def default_extract_title(page: Page) -> str:
    soup = page.soup
    return first_non_blank(
        lambda: select_attr(soup, 'meta[property="og:title"]', "content"),
        lambda: select_text(soup, "h1"),
        lambda: select_text(soup, ".title"),
        lambda: select_text(soup, ".story-title"),
        lambda: soup.title.get_text() if soup.title else None,
    ) or DEFAULT_TITLE


def default_extract_author(page: Page) -> str:
    soup = page.soup
    return first_non_blank(
        lambda: select_attr(soup, 'meta[name="author"]', "content"),
        lambda: select_text(soup, ".author"),
        lambda: select_text(soup, ".story-author"),
        lambda: select_text(soup, '[rel="author"]'),
    ) or DEFAULT_AUTHOR


def to_language_tag(locale: str) -> str:
    """'en_US' -> 'en-US'"""
    return locale.strip().replace("_", "-")


def default_extract_language(page: Page) -> str:
    soup = page.soup
    locale = first_non_blank(
        lambda: select_attr(soup, 'meta[property="og:locale"]', "content"),
        lambda: select_attr(soup, "html", "lang"),
    )
    return to_language_tag(locale) if locale else DEFAULT_LANGUAGE


def default_extract_cover_url(page: Page) -> Optional[str]:
    soup = page.soup
    src = first_non_blank(
        lambda: select_attr(soup, 'meta[property="og:image"]', "content"),
        lambda: select_attr(soup, ".cover-image img", "src"),
        lambda: select_attr(soup, ".story-cover img", "src"),
        lambda: select_attr(soup, 'img[alt*="cover" i]', "src"),
        lambda: select_attr(soup, "img", "src"),
    )
    return urljoin(page.url, src) if src else None


def default_extract_chapter_title(page: Page) -> Optional[str]:
    for element in page.soup.select(CHAPTER_TITLE_SELECTOR):
        text = element.get_text().strip()
        if 0 < len(text) < MAX_CHAPTER_TITLE_LENGTH:
            return text
    return None


def default_extract_subject(page: Page) -> Optional[str]:
    return first_non_blank(
        lambda: select_attr(page.soup, 'meta[name="keywords"]', "content"),
    )


def default_extract_description(page: Page) -> Optional[str]:
    soup = page.soup
    return first_non_blank(
        lambda: select_attr(soup, 'meta[property="og:description"]', "content"),
        lambda: select_attr(soup, 'meta[name="description"]', "content"),
    )


@dataclass(frozen=True)
class Strategy:
    """
    The parsing functions used for one site.
    A site variant replaces only the functions it needs and calls the
    default_* function itself when it wants the generic behaviour.
    """
    name: str = "default"
    discover_chapters: Callable[[Page], ChapterList] = default_discover_chapters
    locate_content_region: Callable[[Page], Tag] = default_locate_content_region
    extract_title: Callable[[Page], str] = default_extract_title
    extract_author: Callable[[Page], str] = default_extract_author
    extract_language: Callable[[Page], str] = default_extract_language
    extract_cover_url: Callable[[Page], Optional[str]] = default_extract_cover_url
    extract_chapter_title: Callable[[Page], Optional[str]] = default_extract_chapter_title
    extract_subject: Callable[[Page], Optional[str]] = default_extract_subject
    extract_description: Callable[[Page], Optional[str]] = default_extract_description

    def extract_metadata(self, page: Page) -> StoryMetadata:
        return StoryMetadata(
            source_url=page.url,
            title=self.extract_title(page),
            author=self.extract_author(page),
            language=self.extract_language(page),
            cover_url=self.extract_cover_url(page),
            subject=self.extract_subject(page),
            description=self.extract_description(page),
        )


DEFAULT_STRATEGY = Strategy()
