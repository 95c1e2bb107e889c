from typing import Iterable, Iterator, List, Optional, Tuple

from .models import ChapterDescriptor
from .utils import get_logger, normalize_url_for_compare

logger = get_logger("ChapterList")


class ChapterList:
    """
    Ordered, de-duplicated chapters of one work.
    Indexes are kept dense (0..n-1) after every reordering.
    """

    def __init__(self):
        self._chapters: List[ChapterDescriptor] = []
        self._seen = set()

    @classmethod
    def from_links(cls, links: Iterable[Tuple[str, str]]) -> "ChapterList":
        chapters = cls()
        for url, title in links:
            chapters.add(url, title)
        return chapters

    def add(self, url: str, title: str) -> Optional[ChapterDescriptor]:
        """Appends a chapter; returns None if its URL is already listed."""
        key = normalize_url_for_compare(url)
        if key in self._seen:
            logger.debug(f"Skipping duplicate chapter link: {url}")
            return None
        self._seen.add(key)
        chapter = ChapterDescriptor(source_url=url, title=title, index=len(self._chapters))
        self._chapters.append(chapter)
        return chapter

    def __len__(self):
        return len(self._chapters)

    def __iter__(self) -> Iterator[ChapterDescriptor]:
        return iter(self._chapters)

    def __getitem__(self, index: int) -> ChapterDescriptor:
        return self._chapters[index]

    def included(self) -> List[ChapterDescriptor]:
        return [c for c in self._chapters if c.include]

    def urls(self) -> List[str]:
        return [c.source_url for c in self._chapters]

    # -- Selection --

    def select_all(self):
        for chapter in self._chapters:
            chapter.include = True

    def select_none(self):
        for chapter in self._chapters:
            chapter.include = False

    def set_included(self, index: int, include: bool):
        self._chapters[index].include = include

    def select_range(self, start: int, end: int):
        """Includes chapters start..end (inclusive, 0-based) and excludes the rest."""
        if start > end:
            raise ValueError(f"Invalid chapter range {start}-{end}")
        if start < 0 or end >= len(self._chapters):
            raise IndexError(f"Chapter range {start}-{end} outside 0-{len(self._chapters) - 1}")
        for chapter in self._chapters:
            chapter.include = start <= chapter.index <= end

    # -- Ordering --

    def reverse(self):
        self._chapters.reverse()
        self._renumber()

    def move(self, from_index: int, to_index: int):
        if not (0 <= from_index < len(self._chapters)):
            raise IndexError(f"No chapter at position {from_index}")
        if not (0 <= to_index < len(self._chapters)):
            raise IndexError(f"Cannot move chapter to position {to_index}")
        chapter = self._chapters.pop(from_index)
        self._chapters.insert(to_index, chapter)
        self._renumber()

    def _renumber(self):
        for position, chapter in enumerate(self._chapters):
            chapter.index = position

    # -- Editing --

    def rename(self, index: int, title: str):
        chapter = self._chapters[index]
        chapter.title = title
        chapter.title_edited = True

    def replace_urls(self, urls: Iterable[str]):
        """
        Rebuilds the list from edited URL text.
        Known URLs keep their title and selection; new ones are titled by URL.
        """
        previous = {normalize_url_for_compare(c.source_url): c for c in self._chapters}
        self._chapters = []
        self._seen = set()
        for url in urls:
            url = url.strip()
            if not url:
                continue
            old = previous.get(normalize_url_for_compare(url))
            chapter = self.add(url, old.title if old else url)
            if chapter is not None and old is not None:
                chapter.include = old.include
                chapter.title_edited = old.title_edited

    def reset_statuses(self):
        for chapter in self._chapters:
            chapter.reset()
