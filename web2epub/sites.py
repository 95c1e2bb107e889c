"""
Site-specific strategies.

Each factory returns a copy of DEFAULT_STRATEGY with the functions that site
needs replaced. To support another site, write its functions here and add
its host to SITE_STRATEGIES.
"""
import copy
import re
from dataclasses import replace
from typing import Optional
from urllib.parse import urljoin

import soupsieve
from bs4 import Tag

from .chapter_list import ChapterList
from .errors import ConfigurationError
from .models import Page
from .strategy import (
    DEFAULT_STRATEGY,
    Strategy,
    class_string,
    default_discover_chapters,
    default_extract_author,
    default_extract_cover_url,
    default_extract_title,
    default_locate_content_region,
    first_non_blank,
    hyperlinks_to_chapter_list,
    select_attr,
    select_text,
)
from .utils import get_logger

logger = get_logger("Sites")


# -- Royal Road --

def _is_wanted_royalroad_child(element: Tag) -> bool:
    if element.name == "h1":
        return True
    classes = class_string(element)
    return element.name == "div" and (
        classes.startswith("chapter-inner")
        or "author-note-portlet" in classes
        or "page-content" in classes
    )


def royalroad_discover_chapters(page: Page) -> ChapterList:
    table = page.soup.select_one("table#chapters")
    if table is not None:
        return ChapterList.from_links(hyperlinks_to_chapter_list(table, page.url))

    links = []
    for link in page.soup.select('a[href*="/chapter/"]'):
        title = link.get_text().strip()
        lowered = title.lower()
        if not title or "next" in lowered or "previous" in lowered:
            continue
        links.append((urljoin(page.url, link["href"]), title))
    return ChapterList.from_links(links)


def royalroad_locate_content_region(page: Page) -> Tag:
    for portlet in page.soup.select("div.portlet-body"):
        if portlet.select_one("div.chapter-inner") is None:
            continue
        region = copy.copy(portlet)
        unwanted = [c for c in region.find_all(True, recursive=False)
                    if not _is_wanted_royalroad_child(c)]
        for child in unwanted:
            child.decompose()
        return region

    wrapper = page.soup.select_one(".page-content-wrapper")
    if wrapper is not None:
        return copy.copy(wrapper)
    return default_locate_content_region(page)


def royalroad_extract_title(page: Page) -> str:
    return first_non_blank(
        lambda: select_text(page.soup, "div.fic-header div.col h1"),
    ) or default_extract_title(page)


def royalroad_extract_author(page: Page) -> str:
    return first_non_blank(
        lambda: select_text(page.soup, "div.fic-header h4 span a"),
    ) or default_extract_author(page)


def royalroad_extract_cover_url(page: Page) -> Optional[str]:
    src = select_attr(page.soup, "img.thumbnail", "src")
    if src and src.strip():
        return urljoin(page.url, src.strip())
    return default_extract_cover_url(page)


def royalroad_strategy() -> Strategy:
    return replace(
        DEFAULT_STRATEGY,
        name="royalroad",
        discover_chapters=royalroad_discover_chapters,
        locate_content_region=royalroad_locate_content_region,
        extract_title=royalroad_extract_title,
        extract_author=royalroad_extract_author,
        extract_cover_url=royalroad_extract_cover_url,
    )


# -- Archive of Our Own --

AO3_WORK_ID = re.compile(r"works/(\d+)")


def ao3_extract_title(page: Page) -> str:
    return first_non_blank(
        lambda: select_text(page.soup, "h2.title"),
        lambda: select_text(page.soup, ".title a"),
    ) or default_extract_title(page)


def ao3_extract_author(page: Page) -> str:
    return first_non_blank(
        lambda: select_text(page.soup, 'a[rel="author"]'),
        lambda: select_text(page.soup, ".byline a"),
    ) or default_extract_author(page)


def ao3_discover_chapters(page: Page) -> ChapterList:
    chapter_select = page.soup.select_one("#selected_id")
    if chapter_select is None:
        # Single chapter work
        chapters = ChapterList()
        chapters.add(page.url, ao3_extract_title(page))
        return chapters

    match = AO3_WORK_ID.search(page.url)
    if match is None:
        logger.warning(f"No work id in {page.url}, falling back to link discovery")
        return default_discover_chapters(page)

    work_id = match.group(1)
    chapters = ChapterList()
    for option in chapter_select.find_all("option"):
        value = (option.get("value") or "").strip()
        if not value or value == "0":
            continue
        chapters.add(
            f"https://archiveofourown.org/works/{work_id}/chapters/{value}",
            option.get_text().strip(),
        )
    return chapters


def ao3_locate_content_region(page: Page) -> Tag:
    content = page.soup.select_one("#workskin") or page.soup.select_one(".userstuff")
    if content is not None:
        return copy.copy(content)
    return default_locate_content_region(page)


def ao3_strategy() -> Strategy:
    return replace(
        DEFAULT_STRATEGY,
        name="archiveofourown",
        discover_chapters=ao3_discover_chapters,
        locate_content_region=ao3_locate_content_region,
        extract_title=ao3_extract_title,
        extract_author=ao3_extract_author,
    )


# -- User configured --

def compile_selector(selector: str, option: str):
    """Compiles a user-supplied CSS selector or raises ConfigurationError."""
    try:
        return soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError as e:
        raise ConfigurationError(f"Invalid {option} '{selector}': {e}") from e


def custom_strategy(content_selector: str,
                    chapter_title_selector: Optional[str] = None,
                    unwanted_selector: Optional[str] = None,
                    base: Strategy = DEFAULT_STRATEGY) -> Strategy:
    """
    Strategy driven by CSS selectors the user typed in.
    Anything not covered by a selector comes from base.
    Selectors are compiled here, so a typo fails before any page is fetched.
    """
    content_pattern = compile_selector(content_selector, "content selector")
    title_pattern = None
    if chapter_title_selector:
        title_pattern = compile_selector(chapter_title_selector, "chapter title selector")
    unwanted_pattern = None
    if unwanted_selector:
        unwanted_pattern = compile_selector(unwanted_selector, "unwanted selector")

    def locate_content_region(page: Page) -> Tag:
        element = content_pattern.select_one(page.soup)
        if element is None:
            logger.warning(f"Content selector '{content_selector}' matched nothing on {page.url}")
            return base.locate_content_region(page)
        region = copy.copy(element)
        if unwanted_pattern is not None:
            for unwanted in unwanted_pattern.select(region):
                if not unwanted.decomposed:
                    unwanted.decompose()
        return region

    def extract_chapter_title(page: Page) -> Optional[str]:
        if title_pattern is not None:
            element = title_pattern.select_one(page.soup)
            title = first_non_blank(lambda: element.get_text() if element is not None else None)
            if title:
                return title
        return base.extract_chapter_title(page)

    return replace(
        base,
        name=f"custom({base.name})",
        locate_content_region=locate_content_region,
        extract_chapter_title=extract_chapter_title,
    )


SITE_STRATEGIES = {
    "royalroad.com": royalroad_strategy,
    "royalroadl.com": royalroad_strategy,
    "archiveofourown.org": ao3_strategy,
}
